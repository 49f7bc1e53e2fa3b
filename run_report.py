import datetime
import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Set

import pandas as pd

from group_provisioner import RowOutcome, RowStatus

DEFAULT_CSV = "out/group_provision_report.csv"
DEFAULT_JSON = "out/group_provision_report.json"


@dataclass
class RunSummary:
    created_groups: Set[str] = field(default_factory=set)
    failed_groups: Set[str] = field(default_factory=set)
    failed_members: Set[str] = field(default_factory=set)
    issues: Dict[str, List[str]] = field(default_factory=dict)
    outcomes: List[RowOutcome] = field(default_factory=list)


def group_key(outcome: RowOutcome) -> str:
    return outcome.group_address or f"<row {outcome.row}>"


def _ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


class RunReporter:
    def __init__(self):
        self.summary = RunSummary()

    def record(self, outcome: RowOutcome) -> None:
        s = self.summary
        s.outcomes.append(outcome)
        key = group_key(outcome)
        if outcome.status is RowStatus.NOT_CREATED:
            s.failed_groups.add(key)
        else:
            s.created_groups.add(key)
        s.failed_members.update(outcome.failed_members)
        if outcome.details and outcome.status is not RowStatus.CREATED:
            s.issues.setdefault(key, []).extend(outcome.details)

    def print_summary(self) -> None:
        s = self.summary
        print(f"\nGroups created: {len(s.created_groups)}")
        for g in sorted(s.created_groups):
            print(f"  • {g}")
        print(f"Groups failed: {len(s.failed_groups)}")
        for g in sorted(s.failed_groups):
            print(f"  • {g}: {'; '.join(s.issues.get(g, []))}")
        print(f"Members that could not be added: {len(s.failed_members)}")
        for m in sorted(s.failed_members):
            print(f"  • {m}")

    def export_csv(self, path: str = DEFAULT_CSV) -> str:
        _ensure_parent(path)
        df = pd.DataFrame(
            [{"Group": group_key(o), "Status": o.status.value} for o in self.summary.outcomes],
            columns=["Group", "Status"],
        )
        df.to_csv(path, index=False)
        return path

    def export_json(self, path: str = DEFAULT_JSON) -> str:
        s = self.summary
        _ensure_parent(path)
        with open(path, "w", encoding="utf-8") as jf:
            json.dump({
                "generated": datetime.datetime.now(datetime.timezone.utc).isoformat(),
                "summary": {
                    "created_groups": sorted(s.created_groups),
                    "failed_groups": sorted(s.failed_groups),
                    "failed_members": sorted(s.failed_members),
                },
                "results": [
                    {
                        "group": group_key(o),
                        "row": o.row,
                        "status": o.status.value,
                        "issues": list(o.details),
                        "failed_members": list(o.failed_members),
                    }
                    for o in s.outcomes
                ],
            }, jf, indent=2)
        return path
