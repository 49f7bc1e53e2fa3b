import enum
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

SUCCESS_DETAILS = "Group created successfully."
MISSING_ADDRESS = "Missing group address"

INCREMENTAL = "incremental"
BATCH = "batch"


class RowStatus(enum.Enum):
    CREATED = "Created"
    CREATED_WITH_ISSUES = "Created with issues"
    NOT_CREATED = "Not created"


@dataclass(frozen=True)
class GroupSpec:
    address: str
    display_name: str
    owner: str = ""
    members: Tuple[str, ...] = ()
    row: Optional[int] = None


@dataclass(frozen=True)
class RowOutcome:
    group_address: str
    status: RowStatus
    details: Tuple[str, ...] = ()
    failed_members: Tuple[str, ...] = ()
    row: Optional[int] = None

    @property
    def details_text(self) -> str:
        if self.status is RowStatus.CREATED:
            return SUCCESS_DETAILS
        return "; ".join(self.details)


class GroupProvisioner:
    """Turns one GroupSpec into one RowOutcome.

    ``incremental`` creates the group empty and adds members one call at a
    time so a bad member is attributed; ``batch`` hands the whole list to the
    create call. Nothing raised by the client escapes ``process``.
    """

    def __init__(self, client, mode: str = INCREMENTAL, default_owner: Optional[str] = None):
        if mode not in (INCREMENTAL, BATCH):
            raise ValueError(f"Unknown mode '{mode}' (expected '{INCREMENTAL}' or '{BATCH}')")
        self.client = client
        self.mode = mode
        self.default_owner = default_owner

    def process(self, spec: GroupSpec) -> RowOutcome:
        address = (spec.address or "").strip()
        if not address:
            logger.warning("Row %s: %s", spec.row, MISSING_ADDRESS)
            return RowOutcome(address, RowStatus.NOT_CREATED, (MISSING_ADDRESS,), row=spec.row)

        members = [m.strip() for m in spec.members if m and m.strip()]
        owner = (spec.owner or "").strip() or self.default_owner
        batch = self.mode == BATCH

        try:
            self.client.create_group(
                spec.display_name,
                address,
                owner,
                join_restriction="Closed",
                depart_restriction="Closed",
                members=members if batch else None,
            )
        except Exception as e:
            logger.warning("Group %s not created: %s", address, e)
            return RowOutcome(address, RowStatus.NOT_CREATED, (str(e),), row=spec.row)

        issues: List[str] = []
        try:
            self.client.set_visibility(address, hidden=True)
        except Exception as e:
            logger.warning("Could not hide %s from address lists: %s", address, e)
            issues.append(str(e))

        failed: List[str] = []
        if not batch:
            for member in members:
                try:
                    self.client.add_member(address, member)
                except Exception as e:
                    logger.warning("Could not add %s to %s: %s", member, address, e)
                    issues.append(str(e))
                    failed.append(member)

        status = RowStatus.CREATED_WITH_ISSUES if issues else RowStatus.CREATED
        logger.info("%s: %s", address, status.value)
        return RowOutcome(address, status, tuple(issues), tuple(failed), row=spec.row)

    def process_all(self, specs: Iterable[GroupSpec], reporter=None,
                    on_outcome: Optional[Callable[[RowOutcome], None]] = None) -> List[RowOutcome]:
        outcomes = []
        for spec in specs:
            outcome = self.process(spec)
            if reporter is not None:
                reporter.record(outcome)
            if on_outcome is not None:
                on_outcome(outcome)
            outcomes.append(outcome)
        return outcomes
