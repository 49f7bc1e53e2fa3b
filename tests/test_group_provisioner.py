import pytest

from conftest import FakeDirectoryClient
from group_provisioner import (
    MISSING_ADDRESS, SUCCESS_DETAILS, GroupProvisioner, GroupSpec, RowStatus,
)
from run_report import RunReporter


def test_clean_row_is_created(fake_client):
    spec = GroupSpec("sales@contoso.com", "Sales", "boss@contoso.com", ("a@contoso.com", "b@contoso.com"), row=2)
    out = GroupProvisioner(fake_client).process(spec)

    assert out.status is RowStatus.CREATED
    assert out.details_text == SUCCESS_DETAILS
    assert out.row == 2
    assert fake_client.calls[0] == ("create_group", "sales@contoso.com", "boss@contoso.com", None)
    assert fake_client.calls_named("set_visibility") == [("set_visibility", "sales@contoso.com", True)]
    assert [c[2] for c in fake_client.calls_named("add_member")] == ["a@contoso.com", "b@contoso.com"]


def test_blank_member_cells_are_not_added(fake_client):
    spec = GroupSpec("sales@contoso.com", "Sales", "", ("a@contoso.com", "", "   ", "b@contoso.com"))
    GroupProvisioner(fake_client).process(spec)

    assert [c[2] for c in fake_client.calls_named("add_member")] == ["a@contoso.com", "b@contoso.com"]


def test_create_failure_stops_row():
    client = FakeDirectoryClient(fail_create={"dup@contoso.com": "Another object with the same value exists."})
    out = GroupProvisioner(client).process(GroupSpec("dup@contoso.com", "Dup", "", ("a@contoso.com",)))

    assert out.status is RowStatus.NOT_CREATED
    assert out.details_text == "Another object with the same value exists."
    assert client.calls_named("add_member") == []
    assert client.calls_named("set_visibility") == []


def test_single_member_failure_is_reported_once():
    client = FakeDirectoryClient(fail_members={"ghost@contoso.com": "Resource 'ghost@contoso.com' does not exist."})
    spec = GroupSpec("ops@contoso.com", "Ops", "", ("d@contoso.com", "ghost@contoso.com", "e@contoso.com"))
    out = GroupProvisioner(client).process(spec)

    assert out.status is RowStatus.CREATED_WITH_ISSUES
    assert out.details_text.count("Resource 'ghost@contoso.com' does not exist.") == 1
    assert out.failed_members == ("ghost@contoso.com",)
    assert len(client.calls_named("add_member")) == 3


def test_visibility_failure_downgrades_but_keeps_group():
    client = FakeDirectoryClient(fail_visibility={"sales@contoso.com": "Insufficient privileges"})
    out = GroupProvisioner(client).process(GroupSpec("sales@contoso.com", "Sales", "", ("a@contoso.com",)))

    assert out.status is RowStatus.CREATED_WITH_ISSUES
    assert out.details == ("Insufficient privileges",)
    assert out.failed_members == ()
    assert len(client.calls_named("add_member")) == 1


def test_missing_address_makes_no_calls(fake_client):
    out = GroupProvisioner(fake_client).process(GroupSpec("  ", "Nameless", "", ("a@contoso.com",), row=7))

    assert out.status is RowStatus.NOT_CREATED
    assert out.details_text == MISSING_ADDRESS
    assert fake_client.calls == []


def test_default_owner_used_when_cell_blank(fake_client):
    GroupProvisioner(fake_client, default_owner="admin@contoso.com").process(GroupSpec("x@contoso.com", "X"))
    assert fake_client.calls[0][2] == "admin@contoso.com"


def test_batch_mode_passes_members_to_create():
    client = FakeDirectoryClient()
    spec = GroupSpec("sales@contoso.com", "Sales", "", ("a@contoso.com", " ", "b@contoso.com"))
    out = GroupProvisioner(client, mode="batch").process(spec)

    assert out.status is RowStatus.CREATED
    assert client.calls[0][3] == ("a@contoso.com", "b@contoso.com")
    assert client.calls_named("add_member") == []


def test_batch_mode_bad_member_fails_whole_group():
    client = FakeDirectoryClient(fail_members={"ghost@contoso.com": "Invalid member"})
    spec = GroupSpec("sales@contoso.com", "Sales", "", ("a@contoso.com", "ghost@contoso.com"))
    out = GroupProvisioner(client, mode="batch").process(spec)

    assert out.status is RowStatus.NOT_CREATED
    assert out.details == ("Invalid member",)
    assert out.failed_members == ()


def test_unknown_mode_rejected(fake_client):
    with pytest.raises(ValueError):
        GroupProvisioner(fake_client, mode="parallel")


def test_process_all_keeps_order_and_feeds_reporter():
    client = FakeDirectoryClient(
        fail_create={"broken@contoso.com": "Request_BadRequest"},
        fail_members={"ghost@contoso.com": "Resource not found"},
    )
    specs = [
        GroupSpec("sales@contoso.com", "Sales", "", ("a@contoso.com",), row=2),
        GroupSpec("broken@contoso.com", "Broken", "", ("c@contoso.com",), row=3),
        GroupSpec("ops@contoso.com", "Ops", "", ("d@contoso.com", "ghost@contoso.com", "e@contoso.com"), row=4),
    ]
    reporter = RunReporter()
    seen = []
    outcomes = GroupProvisioner(client).process_all(specs, reporter, on_outcome=seen.append)

    assert [o.status for o in outcomes] == [
        RowStatus.CREATED, RowStatus.NOT_CREATED, RowStatus.CREATED_WITH_ISSUES,
    ]
    assert seen == outcomes
    s = reporter.summary
    assert s.created_groups == {"sales@contoso.com", "ops@contoso.com"}
    assert s.failed_groups == {"broken@contoso.com"}
    assert s.failed_members == {"ghost@contoso.com"}
