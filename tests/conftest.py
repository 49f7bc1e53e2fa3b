from pathlib import Path
from typing import List, Optional

import pytest
from openpyxl import Workbook


class FakeDirectoryClient:
    """Records every directory call; raises for configured groups/members."""

    def __init__(self, fail_create=None, fail_visibility=None, fail_members=None):
        self.fail_create = dict(fail_create or {})
        self.fail_visibility = dict(fail_visibility or {})
        self.fail_members = dict(fail_members or {})
        self.calls: List[tuple] = []
        self.session = None

    def open_session(self, principal=None):
        self.session = principal or "app"
        return self.session

    def has_open_session(self):
        return self.session is not None

    def create_group(self, name, address, owner=None, join_restriction="Closed",
                     depart_restriction="Closed", members=None):
        self.calls.append(("create_group", address, owner, tuple(members) if members else None))
        if address in self.fail_create:
            raise RuntimeError(self.fail_create[address])
        bad = [m for m in (members or []) if m in self.fail_members]
        if bad:
            raise RuntimeError(self.fail_members[bad[0]])
        return address

    def set_visibility(self, group_address, hidden):
        self.calls.append(("set_visibility", group_address, hidden))
        if group_address in self.fail_visibility:
            raise RuntimeError(self.fail_visibility[group_address])

    def add_member(self, group_address, member_identity):
        self.calls.append(("add_member", group_address, member_identity))
        if member_identity in self.fail_members:
            raise RuntimeError(self.fail_members[member_identity])

    def calls_named(self, name):
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def fake_client():
    return FakeDirectoryClient()


def make_workbook(path: Path, rows: List[list], headers: Optional[list] = None) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.title = "Groups"
    ws.append(headers or ["Address", "Display Name", "Owner", "Member 1", "Member 2", "Member 3"])
    for r in rows:
        ws.append(r)
    wb.save(path)
    return path


@pytest.fixture
def three_row_workbook(tmp_path: Path) -> Path:
    return make_workbook(tmp_path / "groups.xlsx", [
        ["sales@contoso.com", "Sales", "boss@contoso.com", "a@contoso.com", "b@contoso.com", None],
        ["broken@contoso.com", "Broken", "boss@contoso.com", "c@contoso.com", None, None],
        ["ops@contoso.com", "Ops", "boss@contoso.com", "d@contoso.com", "ghost@contoso.com", "e@contoso.com"],
    ])
