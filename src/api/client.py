# src/api/client.py
import requests
from typing import Any, Dict, List, Optional

from src.config import API_TIMEOUT, DISPATCH_API_BASE_URL, DISPATCH_API_PREFIX, DISPATCH_API_TOKEN


class DispatchApiError(RuntimeError):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"dispatch API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail

    @property
    def code(self) -> Optional[str]:
        if isinstance(self.detail, dict):
            return self.detail.get("code")
        return None


def make_headers(token: str | None = None, *, json_ct: bool = True) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if json_ct:
        headers["Content-Type"] = "application/json; charset=utf-8"
    return headers


def _url(path: str, base_url: str | None = None) -> str:
    return f"{(base_url or DISPATCH_API_BASE_URL).rstrip('/')}{DISPATCH_API_PREFIX}{path}"


def _unwrap(resp: requests.Response) -> Any:
    if not resp.ok:
        try:
            detail = resp.json().get("detail")
        except ValueError:
            detail = resp.text
        raise DispatchApiError(resp.status_code, detail)
    if not resp.text.strip():
        return None
    return resp.json()


def get_json(
    path: str,
    *,
    token: str | None = DISPATCH_API_TOKEN,
    params: Dict[str, Any] | None = None,
    timeout: int = API_TIMEOUT,
    base_url: str | None = None,
) -> Any:
    resp = requests.get(_url(path, base_url), headers=make_headers(token, json_ct=False), params=params, timeout=timeout)
    return _unwrap(resp)


def send_json(
    method: str,
    path: str,
    *,
    token: str | None = DISPATCH_API_TOKEN,
    json_body: Dict[str, Any] | None = None,
    timeout: int = API_TIMEOUT,
    base_url: str | None = None,
) -> Any:
    resp = requests.request(method, _url(path, base_url), headers=make_headers(token), json=json_body, timeout=timeout)
    return _unwrap(resp)


# ===========================
#  Dispatch operations
# ===========================
def assign_order(order_id: str, rider_id: str, override_sla: bool = False, **kw) -> Dict[str, Any]:
    """POST /assign  body: { "orderId", "riderId", "overrideSla" }"""
    body = {"orderId": order_id, "riderId": rider_id, "overrideSla": bool(override_sla)}
    return send_json("POST", "/assign", json_body=body, **kw)


def batch_assign(order_ids: List[str], rider_id: str, **kw) -> Dict[str, Any]:
    return send_json("POST", "/batch-assign", json_body={"orderIds": list(order_ids), "riderId": rider_id}, **kw)


def auto_assign(order_ids: List[str], **kw) -> Dict[str, int]:
    """POST /auto-assign → { "assigned", "failed" }"""
    return send_json("POST", "/auto-assign", json_body={"orderIds": list(order_ids)}, **kw)


def recommended_riders(order_id: str, search: str | None = None, **kw) -> List[Dict[str, Any]]:
    params = {"search": search} if search else None
    js = get_json(f"/recommended-riders/{order_id}", params=params, **kw)
    return (js or {}).get("riders") or []


def unassigned_orders(*, page: int = 1, limit: int = 50, **filters) -> Dict[str, Any]:
    params: Dict[str, Any] = {"page": page, "limit": limit}
    params.update({k: v for k, v in filters.items() if v is not None})
    return get_json("/unassigned-orders", params=params)


def get_rule_config(scope: str = "default", **kw) -> Dict[str, Any]:
    return get_json("/rule-config", params={"scope": scope}, **kw)


def update_rule_config(rule: Dict[str, Any], **kw) -> Dict[str, Any]:
    return send_json("PUT", "/rule-config", json_body=rule, **kw)
