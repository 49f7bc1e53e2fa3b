import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

import requests
from msal import ConfidentialClientApplication, PublicClientApplication

SCOPES = ["https://graph.microsoft.com/.default"]
# hideFromAddressLists can only be changed with a signed-in (delegated) token
DELEGATED_SCOPES = ["https://graph.microsoft.com/Group.ReadWrite.All", "https://graph.microsoft.com/User.Read.All"]
# Graph accepts at most 20 owners + members bound in one POST /groups
MAX_CREATE_BINDINGS = 20
GRAPH = "https://graph.microsoft.com/v1.0"

# Exchange-style join restriction -> Microsoft 365 group visibility
JOIN_VISIBILITY = {
    "Closed": "Private",
    "Open": "Public",
}

logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """Raised when no authenticated session to the directory can be opened."""


class GraphError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GraphSession:
    token: str
    principal: Optional[str] = None


@dataclass
class GroupHandle:
    id: str
    address: str
    display_name: str
    members: List[str] = field(default_factory=list)


class GraphDirectoryClient:
    """Creates and configures Microsoft 365 groups through Microsoft Graph.

    One instance holds one session for the whole run; pass it to whatever
    needs to talk to the tenant instead of sharing it globally.

    By default the session is app-only (client secret). Graph only lets a
    signed-in user change ``hideFromAddressLists``, so with ``delegated`` set
    the principal signs in through the device-code flow instead and every
    group can end up fully ``Created``. With ``what_if`` set, writes are
    logged and simulated instead of sent.
    """

    def __init__(self, tenant_id: str, client_id: str, client_secret: str = "",
                 what_if: bool = False, timeout: int = 30, delegated: bool = False):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.what_if = what_if
        self.timeout = timeout
        self.delegated = delegated
        self.session: Optional[GraphSession] = None
        self._group_ids: Dict[str, str] = {}
        self._user_ids: Dict[str, str] = {}

    @classmethod
    def from_env(cls, what_if: bool = False, delegated: bool = False) -> "GraphDirectoryClient":
        tenant_id = os.getenv("TENANT_ID", "")
        client_id = os.getenv("CLIENT_ID", "")
        client_secret = os.getenv("CLIENT_SECRET", "")
        if delegated:
            if not (tenant_id and client_id):
                raise SessionError("TENANT_ID / CLIENT_ID must be set (via .env or env vars).")
        elif not (tenant_id and client_id and client_secret):
            raise SessionError("TENANT_ID / CLIENT_ID / CLIENT_SECRET must be set (via .env or env vars).")
        return cls(tenant_id, client_id, client_secret, what_if=what_if, delegated=delegated)

    # ---- session ---- #

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    def _acquire_app_token(self) -> dict:
        app = ConfidentialClientApplication(
            self.client_id,
            authority=self.authority,
            client_credential=self.client_secret,
        )
        return app.acquire_token_for_client(SCOPES)

    def _acquire_delegated_token(self, principal: Optional[str]) -> dict:
        app = PublicClientApplication(self.client_id, authority=self.authority)
        accounts = app.get_accounts(username=principal) if principal else []
        if accounts:
            cached = app.acquire_token_silent(DELEGATED_SCOPES, account=accounts[0])
            if cached:
                return cached
        flow = app.initiate_device_flow(scopes=DELEGATED_SCOPES)
        if "user_code" not in flow:
            return flow
        print(flow["message"])
        return app.acquire_token_by_device_flow(flow)

    def open_session(self, principal: Optional[str] = None) -> GraphSession:
        try:
            if self.delegated:
                result = self._acquire_delegated_token(principal)
            else:
                result = self._acquire_app_token()
        except Exception as e:
            raise SessionError(f"Token acquisition failed: {e}") from e
        if "access_token" not in result:
            reason = result.get("error_description") or result.get("error") or result
            raise SessionError(f"Token acquisition failed: {reason}")
        self.session = GraphSession(token=result["access_token"], principal=principal)
        logger.info("Connected to tenant %s%s", self.tenant_id,
                    f" as {principal}" if principal else "")
        return self.session

    def has_open_session(self) -> bool:
        return self.session is not None

    # ---- HTTP ---- #

    def _headers(self) -> dict:
        if self.session is None:
            raise SessionError("No open Graph session; call open_session() first.")
        return {"Authorization": f"Bearer {self.session.token}", "Content-Type": "application/json"}

    def _check(self, method: str, url: str, r: requests.Response) -> None:
        if r.status_code >= 400:
            raise GraphError(f"{method} {url} failed: {r.status_code} {r.text}", status_code=r.status_code)

    def graph_get(self, url: str, params: Optional[dict] = None) -> dict:
        r = requests.get(url, headers=self._headers(), params=params, timeout=self.timeout)
        self._check("GET", url, r)
        return r.json()

    def graph_post(self, url: str, body: dict) -> dict:
        headers = self._headers()
        if self.what_if:
            logger.info("WHAT-IF: POST %s %s", url, body)
            return {"what_if": True, "url": url, "body": body}
        r = requests.post(url, headers=headers, json=body, timeout=self.timeout)
        self._check("POST", url, r)
        return r.json() if r.text else {}

    def graph_patch(self, url: str, body: dict) -> None:
        headers = self._headers()
        if self.what_if:
            logger.info("WHAT-IF: PATCH %s %s", url, body)
            return
        r = requests.patch(url, headers=headers, json=body, timeout=self.timeout)
        self._check("PATCH", url, r)

    # ---- lookups ---- #

    def resolve_user_id(self, identity: str) -> str:
        identity = identity.strip()
        if identity in self._user_ids:
            return self._user_ids[identity]
        if self.what_if:
            uid = f"whatif-{identity}"
        else:
            data = self.graph_get(f"{GRAPH}/users/{quote(identity)}", params={"$select": "id"})
            uid = data["id"]
        self._user_ids[identity] = uid
        return uid

    def resolve_group_id(self, address: str) -> str:
        key = address.lower()
        if key in self._group_ids:
            return self._group_ids[key]
        data = self.graph_get(f"{GRAPH}/groups", params={"$filter": f"mail eq '{address}'", "$select": "id"})
        if not data.get("value"):
            raise GraphError(f"Group '{address}' not found", status_code=404)
        gid = data["value"][0]["id"]
        self._group_ids[key] = gid
        return gid

    # ---- directory operations ---- #

    def create_group(self, name: str, address: str, owner: Optional[str] = None,
                     join_restriction: str = "Closed", depart_restriction: str = "Closed",
                     members: Optional[Sequence[str]] = None) -> GroupHandle:
        if join_restriction not in JOIN_VISIBILITY:
            raise ValueError(f"Unsupported join restriction '{join_restriction}'")
        if depart_restriction not in ("Closed", "Open"):
            raise ValueError(f"Unsupported depart restriction '{depart_restriction}'")
        if depart_restriction != "Closed":
            logger.debug("Depart restriction %s has no Graph equivalent; not sent", depart_restriction)
        if "@" not in address:
            raise ValueError(f"Group address '{address}' is not an email address")
        member_list = [m.strip() for m in (members or []) if m and m.strip()]
        bindings = len(member_list) + (1 if owner else 0)
        if bindings > MAX_CREATE_BINDINGS:
            raise ValueError(
                f"Too many owners + members ({bindings}) for one create call; Graph allows "
                f"{MAX_CREATE_BINDINGS}. Add members one by one instead of --batch")

        body = {
            "displayName": name,
            "mailNickname": address.split("@")[0],
            "mailEnabled": True,
            "securityEnabled": False,
            "groupTypes": ["Unified"],
            "visibility": JOIN_VISIBILITY[join_restriction],
        }
        if owner:
            body["owners@odata.bind"] = [f"{GRAPH}/users/{self.resolve_user_id(owner)}"]
        if member_list:
            body["members@odata.bind"] = [f"{GRAPH}/users/{self.resolve_user_id(m)}" for m in member_list]

        created = self.graph_post(f"{GRAPH}/groups", body)
        gid = f"whatif-{address}" if self.what_if else created.get("id")
        self._group_ids[address.lower()] = gid
        logger.debug("Created group %s (%s)", address, gid)
        return GroupHandle(id=gid, address=address, display_name=name, members=member_list)

    def add_member(self, group_address: str, member_identity: str) -> None:
        gid = self.resolve_group_id(group_address)
        uid = self.resolve_user_id(member_identity)
        url = f"{GRAPH}/groups/{gid}/members/$ref"
        self.graph_post(url, {"@odata.id": f"{GRAPH}/directoryObjects/{uid}"})

    def set_visibility(self, group_address: str, hidden: bool) -> None:
        gid = self.resolve_group_id(group_address)
        try:
            self.graph_patch(f"{GRAPH}/groups/{gid}", {"hideFromAddressLists": hidden})
        except GraphError as e:
            if e.status_code == 403 and not self.delegated:
                raise GraphError(
                    f"{e} (hideFromAddressLists needs a delegated session; rerun with --delegated)",
                    status_code=403) from e
            raise
