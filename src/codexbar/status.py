import httpx
import structlog

from codexbar.models import StatusInfo

logger = structlog.get_logger()

STATUS_TIMEOUT_SECONDS = 10.0


def fetch_status(page_url: "str", client: "httpx.Client") -> "StatusInfo | None":
    """
    reads a statuspage.io summary from `<page_url>/api/v2/status.json`.
    Any failure yields None; status is decoration, never a reason to
    drop usage data.
    """
    try:
        resp = client.get(f"{page_url.rstrip('/')}/api/v2/status.json")
    except httpx.HTTPError as exc:
        logger.debug("status_fetch_failed", url=page_url, error=str(exc))
        return None

    if resp.status_code != 200:
        logger.debug("status_fetch_http_error", url=page_url, status_code=resp.status_code)
        return None

    try:
        data = resp.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    status = data.get("status")
    page = data.get("page")
    if not isinstance(status, dict):
        return None

    return StatusInfo(
        indicator=status.get("indicator"),
        description=status.get("description"),
        updated_at=page.get("updated_at") if isinstance(page, dict) else None,
        url=page_url,
    )


def new_status_client() -> "httpx.Client":
    return httpx.Client(
        timeout=STATUS_TIMEOUT_SECONDS,
        headers={"Accept": "application/json"},
        follow_redirects=True,
    )
