"""CNAME records pointing published hostnames at the tunnel."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import UpstreamError
from .common.logging import get_logger
from .upstream import CloudflareClient

logger = get_logger(__name__)


class DnsRecord(BaseModel):
    """A DNS record as returned by the zone API."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    type: str = "CNAME"
    content: str | None = None
    proxied: bool | None = None


class DnsRecordManager:
    """Create, find and delete proxied CNAME records for the tunnel."""

    def __init__(self, cloudflare: CloudflareClient):
        self._cloudflare = cloudflare

    def _records_path(self, suffix: str = "") -> str:
        settings = self._cloudflare.settings()
        return f"/zones/{settings.zone_id}/dns_records{suffix}"

    def create(self, hostname: str) -> str:
        """Create a proxied CNAME to the tunnel and return its record id.

        Raises:
            UpstreamError: If the provider rejects the record (often because
                it already exists)
        """
        settings = self._cloudflare.settings()
        data = self._cloudflare.call(
            self._records_path(),
            "POST",
            {
                "type": "CNAME",
                "proxied": True,
                "name": hostname,
                "content": settings.tunnel_target,
            },
        )
        record_id = (data.get("result") or {}).get("id")
        if not record_id:
            raise UpstreamError(f"DNS record for {hostname} was created without an id")
        logger.info("Created DNS record", hostname=hostname, record_id=record_id)
        return str(record_id)

    def find(self, hostname: str) -> DnsRecord | None:
        data = self._cloudflare.call(self._records_path(), params={"name": hostname})
        results = data.get("result") or []
        if not results:
            return None
        return DnsRecord.model_validate(results[0])

    def delete(self, record_id: str) -> None:
        self._cloudflare.call(self._records_path(f"/{record_id}"), "DELETE")
        logger.info("Deleted DNS record", record_id=record_id)

    def ensure(self, hostname: str) -> tuple[str | None, str | None]:
        """Create the record, or adopt an existing one for the hostname.

        Returns:
            ``(record_id, warning)``; record_id is None when neither creation
            nor lookup produced a record, and warning describes what failed.
        """
        try:
            return self.create(hostname), None
        except UpstreamError as create_error:
            logger.warning(
                "DNS record creation failed, looking up existing record",
                hostname=hostname,
                error=str(create_error),
            )
            try:
                existing = self.find(hostname)
            except UpstreamError as find_error:
                return None, f"DNS create failed ({create_error}); lookup failed ({find_error})"
            if existing is not None:
                return existing.id, None
            return None, f"DNS create failed: {create_error}"

    def list_cnames(self, per_page: int = 100) -> tuple[list[dict[str, Any]], int]:
        """Return ``(records, total_count)`` for the zone's CNAME records."""
        data = self._cloudflare.call(
            self._records_path(), params={"type": "CNAME", "per_page": per_page}
        )
        info = data.get("result_info") or {}
        records = data.get("result") or []
        return records, int(info.get("total_count") or len(records))
