"""
NPHIES Bundle Identity Coordination.

Source: FHIR R4 Bundle.entry.fullUrl and Reference resolution rules
Verified: 2025-12-19

Every entry in an outgoing bundle is referenced by other entries
(``Patient/<id>``, ``Organization/<id>``...). The coordinator allocates one
identity per role up front; builders only read from the resulting
IdentitySet, so every reference they emit resolves inside the bundle.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Mapping, Optional, Set, Tuple
from uuid import uuid4
import logging

from src.services.nphies.fhir_base import IdentityAllocationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Logical role of a document inside one outgoing message."""

    MESSAGE_HEADER = "message_header"
    CLAIM = "claim"
    ENCOUNTER = "encounter"
    COVERAGE = "coverage"
    PRACTITIONER = "practitioner"
    FACILITY = "facility"
    PAYER = "payer"
    SUBJECT = "subject"
    POLICY_HOLDER = "policy_holder"
    TASK = "task"

    @property
    def resource_type(self) -> str:
        return _RESOURCE_TYPES[self]


_RESOURCE_TYPES: Dict[Role, str] = {
    Role.MESSAGE_HEADER: "MessageHeader",
    Role.CLAIM: "Claim",
    Role.ENCOUNTER: "Encounter",
    Role.COVERAGE: "Coverage",
    Role.PRACTITIONER: "Practitioner",
    Role.FACILITY: "Organization",
    Role.PAYER: "Organization",
    Role.SUBJECT: "Patient",
    Role.POLICY_HOLDER: "Patient",
    Role.TASK: "Task",
}

# Roles that always get a fresh identity
_GENERATED_ONLY = {Role.MESSAGE_HEADER, Role.TASK}

# Preferred-id marker for a distinct person whose record carries no id
NEW_IDENTITY = "<new>"


@dataclass(frozen=True)
class IdentitySet:
    """Immutable role -> identity mapping for one outgoing message."""

    identities: Mapping[Role, str]
    attachments: Tuple[str, ...] = ()
    base_url: str = "http://provider.com"

    def __contains__(self, role: Role) -> bool:
        return role in self.identities

    def get(self, role: Role) -> str:
        try:
            return self.identities[role]
        except KeyError:
            raise KeyError(f"No identity allocated for role '{role.value}'") from None

    def reference(self, role: Role) -> str:
        """Relative reference, e.g. ``Patient/<id>``."""
        return f"{role.resource_type}/{self.get(role)}"

    def full_url(self, role: Role) -> str:
        """Entry fullUrl; the message header uses a ``urn:uuid``."""
        if role is Role.MESSAGE_HEADER:
            return f"urn:uuid:{self.get(role)}"
        return f"{self.base_url}/{role.resource_type}/{self.get(role)}"

    def attachment_full_url(self, index: int) -> str:
        return f"{self.base_url}/Binary/{self.attachments[index]}"

    def resolvable_references(self) -> Set[str]:
        """Every reference string that resolves to an entry of this message."""
        refs = {self.reference(role) for role in self.identities}
        refs.update(self.full_url(role) for role in self.identities)
        refs.update(f"Binary/{binary_id}" for binary_id in self.attachments)
        return refs

    @property
    def distinct_policy_holder(self) -> bool:
        """Policy holder is a separate person from the subject."""
        return (
            Role.POLICY_HOLDER in self.identities
            and self.identities[Role.POLICY_HOLDER] != self.identities.get(Role.SUBJECT)
        )


class IdentityCoordinator:
    """
    Allocates the IdentitySet for a single outgoing message.

    A coordinator is single-use: allocating twice would hand different
    builders different identities for the same role.

    Usage:
        coordinator = IdentityCoordinator()
        ids = coordinator.allocate(
            [Role.CLAIM, Role.SUBJECT],
            preferred={Role.SUBJECT: patient.patient_id},
        )
        ids.reference(Role.SUBJECT)  # "Patient/<patient_id>"
    """

    def __init__(
        self,
        base_url: str = "http://provider.com",
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._id_factory = id_factory or (lambda: str(uuid4()))
        self._allocated: Optional[IdentitySet] = None

    def allocate(
        self,
        roles: Iterable[Role],
        preferred: Optional[Mapping[Role, Optional[str]]] = None,
        attachment_ids: Iterable[Optional[str]] = (),
    ) -> IdentitySet:
        """
        Allocate one identity per role.

        Args:
            roles: Roles present in the message
            preferred: Existing record ids to reuse, keyed by role. NEW_IDENTITY
                asks for a generated id that is never shared with the subject
            attachment_ids: Preferred Binary ids, one per attachment (None to generate)

        Returns:
            IdentitySet for the message

        Raises:
            IdentityAllocationError: If this coordinator already allocated
        """
        if self._allocated is not None:
            raise IdentityAllocationError(
                "Identity coordinator already allocated for this message",
                resource_type="Bundle",
            )

        roles = list(roles)
        preferred = preferred or {}
        identities: Dict[Role, str] = {}
        taken: Set[Tuple[str, str]] = set()

        for role in roles:
            if role in identities:
                continue
            if role is Role.POLICY_HOLDER:
                continue
            candidate = None if role in _GENERATED_ONLY else preferred.get(role)
            candidate = str(candidate).strip() if candidate not in (None, "") else None
            if candidate and (role.resource_type, candidate) in taken:
                logger.warning(
                    f"Record id {candidate} already used by another {role.resource_type}; "
                    f"generating a new identity for {role.value}"
                )
                candidate = None
            identity = candidate or self._id_factory()
            identities[role] = identity
            taken.add((role.resource_type, identity))

        if Role.POLICY_HOLDER in roles:
            identities[Role.POLICY_HOLDER] = self._policy_holder_identity(
                preferred.get(Role.POLICY_HOLDER), identities, taken
            )

        attachments = []
        for binary_id in attachment_ids:
            attachments.append(str(binary_id) if binary_id else f"binary-{self._id_factory()}")

        self._allocated = IdentitySet(
            identities=MappingProxyType(identities),
            attachments=tuple(attachments),
            base_url=self.base_url,
        )
        return self._allocated

    def _policy_holder_identity(
        self,
        preferred_id: Optional[str],
        identities: Dict[Role, str],
        taken: Set[Tuple[str, str]],
    ) -> str:
        """Policy holder defaults to the subject when no distinct record exists."""
        subject = identities.get(Role.SUBJECT)
        if preferred_id == NEW_IDENTITY:
            return self._id_factory()
        if preferred_id in (None, ""):
            if subject is None:
                subject = self._id_factory()
            return subject
        candidate = str(preferred_id)
        if candidate == subject or ("Patient", candidate) not in taken:
            return candidate
        return self._id_factory()
