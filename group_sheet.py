import logging
import zipfile
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from openpyxl import load_workbook
from openpyxl.styles import PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from group_provisioner import GroupSpec, RowOutcome, RowStatus

logger = logging.getLogger(__name__)

# Accepted header spellings, compared lower-case with spaces and underscores removed
ADDRESS_HEADERS = {"address", "email", "groupaddress", "groupemail", "primarysmtpaddress"}
NAME_HEADERS = {"displayname", "name", "groupname"}
OWNER_HEADERS = {"owner", "moderator", "managedby"}
STATUS_HEADER = "Status"
DETAILS_HEADER = "Details"

STATUS_FILLS = {
    RowStatus.CREATED: PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
    RowStatus.CREATED_WITH_ISSUES: PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid"),
    RowStatus.NOT_CREATED: PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
}
MAX_COLUMN_WIDTH = 60


class SheetSchemaError(RuntimeError):
    pass


def _norm(header) -> str:
    if header is None:
        return ""
    return str(header).strip().lower().replace(" ", "").replace("_", "")


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def default_output_path(path: str) -> str:
    p = Path(path)
    return str(p.with_name(f"{p.stem}_results.xlsx"))


class GroupSheet:
    """A group-definition worksheet, resolved by header names.

    Row 1 holds the headers. Address and display name are required; the owner
    column is optional and every column to the right of the last of those is
    a member column. Status and Details are reused if present, else appended.
    """

    def __init__(self, path: str, workbook, worksheet):
        self.path = path
        self.wb = workbook
        self.ws = worksheet
        self.columns: Dict[str, int] = {}
        self.member_columns: List[int] = []
        self._resolve_schema()

    @classmethod
    def open(cls, path: str, sheet_name: Optional[str] = None) -> "GroupSheet":
        try:
            wb = load_workbook(path)
        except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
            raise SheetSchemaError(f"{path} is not a readable .xlsx workbook: {e}") from e
        if sheet_name:
            if sheet_name not in wb.sheetnames:
                wb.close()
                raise SheetSchemaError(f"Worksheet '{sheet_name}' not found in {path}")
            ws = wb[sheet_name]
        else:
            ws = wb.active
        return cls(path, wb, ws)

    def _resolve_schema(self) -> None:
        headers = [c.value for c in self.ws[1]]
        found: Dict[str, int] = {}
        for idx, h in enumerate(headers, start=1):
            key = _norm(h)
            for role, names in (("address", ADDRESS_HEADERS), ("name", NAME_HEADERS), ("owner", OWNER_HEADERS)):
                if key in names and role not in found:
                    found[role] = idx
            if key == _norm(STATUS_HEADER) and "status" not in found:
                found["status"] = idx
            elif key == _norm(DETAILS_HEADER) and "details" not in found:
                found["details"] = idx

        missing = [role for role in ("address", "name") if role not in found]
        if missing:
            raise SheetSchemaError(
                f"Missing required column(s) {', '.join(missing)} in header row: {headers}")

        last_used = len(headers)
        while last_used > 0 and headers[last_used - 1] is None and self._column_empty(last_used):
            last_used -= 1

        anchor = max(found[r] for r in ("address", "name", "owner") if r in found)
        result_cols = {found.get("status"), found.get("details")}
        self.member_columns = [c for c in range(anchor + 1, last_used + 1) if c not in result_cols]

        for role, header in (("status", STATUS_HEADER), ("details", DETAILS_HEADER)):
            if role not in found:
                last_used += 1
                found[role] = last_used
                self.ws.cell(row=1, column=last_used).value = header
        self.columns = found
        logger.debug("Resolved columns %s, members in %s", found, self.member_columns)

    def _column_empty(self, col: int) -> bool:
        for (value,) in self.ws.iter_rows(min_row=2, min_col=col, max_col=col, values_only=True):
            if _text(value):
                return False
        return True

    def read_specs(self) -> Iterator[GroupSpec]:
        c = self.columns
        for row in range(2, self.ws.max_row + 1):
            address = _text(self.ws.cell(row, c["address"]).value)
            name = _text(self.ws.cell(row, c["name"]).value)
            owner = _text(self.ws.cell(row, c["owner"]).value) if "owner" in c else ""
            members = tuple(
                m for m in (_text(self.ws.cell(row, col).value) for col in self.member_columns) if m
            )
            if not (address or name or owner or members):
                continue
            yield GroupSpec(address=address, display_name=name or address, owner=owner,
                            members=members, row=row)

    def existing_status(self, row: int) -> str:
        return _text(self.ws.cell(row, self.columns["status"]).value)

    def write_outcome(self, outcome: RowOutcome) -> None:
        if outcome.row is None:
            raise ValueError(f"Outcome for {outcome.group_address} has no sheet row")
        self.ws.cell(outcome.row, self.columns["status"]).value = outcome.status.value
        self.ws.cell(outcome.row, self.columns["details"]).value = outcome.details_text
        fill = STATUS_FILLS[outcome.status]
        last = max(self.ws.max_column, self.columns["status"], self.columns["details"])
        for col in range(1, last + 1):
            self.ws.cell(outcome.row, col).fill = fill

    def autofit_columns(self) -> None:
        for col in range(1, self.ws.max_column + 1):
            width = 0
            for (value,) in self.ws.iter_rows(min_col=col, max_col=col, values_only=True):
                width = max(width, len(_text(value)))
            self.ws.column_dimensions[get_column_letter(col)].width = min(width + 2, MAX_COLUMN_WIDTH)

    def save_copy(self, path: Optional[str] = None) -> str:
        out = path or default_output_path(self.path)
        parent = Path(out).parent
        parent.mkdir(parents=True, exist_ok=True)
        self.wb.save(out)
        return out

    def save(self) -> None:
        self.wb.save(self.path)

    def close(self) -> None:
        self.wb.close()
