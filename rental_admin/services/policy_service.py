from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any


LOGGER = logging.getLogger("rental_admin.policy")

OPERATION_BY_METHOD = {
    "GET": "read",
    "HEAD": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


class PolicyServiceError(RuntimeError):
    pass


class AccessDeniedError(RuntimeError):
    pass


def _require_env(name: str) -> str:
    value = (os.environ.get(name) or "").strip()
    if not value:
        raise PolicyServiceError(f"Missing required environment variable: {name}")
    return value


def _timeout_seconds() -> float:
    try:
        return float(os.environ.get("POLICY_API_TIMEOUT_SECONDS") or "10")
    except ValueError:
        return 10.0


def convert_method_to_operation(method: str) -> str:
    operation = OPERATION_BY_METHOD.get((method or "").upper())
    if not operation:
        raise ValueError(f"No access operation for method {method}")
    return operation


def _post_access_check(payload: dict[str, Any]) -> dict[str, Any]:
    base_url = _require_env("POLICY_API_BASE_URL").rstrip("/")
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    token = (os.environ.get("POLICY_API_TOKEN") or "").strip()
    if token:
        headers["Authorization"] = f"Bearer {token}"
    request = urllib.request.Request(
        url=f"{base_url}/access/check",
        data=json.dumps(payload, ensure_ascii=True).encode("utf-8"),
        headers=headers,
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=_timeout_seconds()) as response:
            if response.status != 200:
                raise AccessDeniedError(f"Policy service returned status {response.status}")
            body = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        if 400 <= exc.code < 500:
            raise AccessDeniedError(f"Policy service denied access with status {exc.code}") from exc
        raise PolicyServiceError(f"Policy service HTTP error: {exc.code}") from exc
    except urllib.error.URLError as exc:
        raise PolicyServiceError(f"Policy service connection error: {exc.reason}") from exc
    except json.JSONDecodeError as exc:
        raise PolicyServiceError("Policy service returned invalid JSON") from exc
    if not isinstance(body, dict):
        raise PolicyServiceError("Policy service payload is not an object")
    return body


def check_access(
    session: dict[str, Any],
    entity: str,
    operation: str,
    entity_id: str | None = None,
) -> None:
    """Ask the policy service whether the session may run ``operation`` on ``entity``.

    ``entity_id`` is omitted for collection-level checks (lists, creates, page gates).
    Raises AccessDeniedError on denial and PolicyServiceError when the service
    cannot answer.
    """
    payload = {
        "userId": session.get("roqUserId"),
        "tenantId": session.get("tenantId"),
        "roles": list(session.get("roles") or []),
        "entity": entity,
        "entityId": entity_id,
        "operation": operation,
    }
    try:
        decision = _post_access_check(payload)
    except AccessDeniedError:
        LOGGER.warning(
            "Access denied user=%s tenant=%s entity=%s id=%s operation=%s",
            payload["userId"], payload["tenantId"], entity, entity_id, operation,
        )
        raise
    if not decision.get("allowed"):
        LOGGER.warning(
            "Access denied user=%s tenant=%s entity=%s id=%s operation=%s reason=%s",
            payload["userId"], payload["tenantId"], entity, entity_id, operation, decision.get("reason"),
        )
        raise AccessDeniedError(str(decision.get("reason") or f"Access to {entity} denied."))
