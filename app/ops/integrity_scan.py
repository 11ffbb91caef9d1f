from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict, dataclass, field

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.branchstock.core.config import settings
from app.ops.integrity_checks import (
    SEVERITY_CRITICAL,
    SEVERITY_WARN,
    IntegrityFinding,
    resolve_tenants,
    run_integrity_checks,
)

EXIT_OK = 0
EXIT_CRITICAL = 1
EXIT_USAGE = 2


@dataclass
class ScanReport:
    tenant_ids: list[str]
    findings: list[IntegrityFinding] = field(default_factory=list)

    def count(self, severity: str) -> int:
        return sum(1 for finding in self.findings if finding.severity == severity)

    @property
    def summary(self) -> dict:
        return {
            "total": len(self.findings),
            "critical": self.count(SEVERITY_CRITICAL),
            "warn": self.count(SEVERITY_WARN),
        }

    def as_json(self) -> str:
        body = {
            "tenants": self.tenant_ids,
            "summary": self.summary,
            "findings": [asdict(finding) for finding in self.findings],
        }
        return json.dumps(body, indent=2, default=str)

    def as_text(self) -> str:
        summary = self.summary
        out = [
            f"Branchstock integrity scan: {len(self.tenant_ids)} tenant(s)",
            f"findings={summary['total']} critical={summary['critical']} warn={summary['warn']}",
        ]
        for finding in self.findings:
            out.append(
                f"[{finding.severity}] {finding.check_id} tenant={finding.tenant_id} "
                f"{finding.entity}={finding.entity_id or '-'} {finding.message}"
            )
            if finding.details:
                out.append(f"    {json.dumps(finding.details, default=str, sort_keys=True)}")
        return "\n".join(out)


def scan(db: Session, tenant_ids: list[str]) -> ScanReport:
    report = ScanReport(tenant_ids=tenant_ids)
    for tenant_id in report.tenant_ids:
        report.findings.extend(run_integrity_checks(db, tenant_id))
    return report


def run_scan(tenant: str, output_format: str, fail_on_critical: bool, *, database_url: str | None = None) -> int:
    """Scan one tenant (or ``all``) and print the report.

    Returns 0 when clean or only warnings were found, 1 for critical findings
    under ``fail_on_critical`` and 2 when the scan is disabled or the tenant
    argument is unusable.
    """
    if not settings.OPS_ENABLE_INTEGRITY_SCAN:
        print("Integrity scan disabled by OPS_ENABLE_INTEGRITY_SCAN.", file=sys.stderr)
        return EXIT_USAGE
    engine = create_engine(database_url or settings.DATABASE_URL, future=True)
    try:
        with Session(engine) as db:
            try:
                tenant_ids = resolve_tenants(db, tenant)
            except ValueError as exc:
                print(str(exc), file=sys.stderr)
                return EXIT_USAGE
            report = scan(db, tenant_ids)
    finally:
        engine.dispose()

    print(report.as_json() if output_format == "json" else report.as_text())
    if fail_on_critical and report.summary["critical"]:
        return EXIT_CRITICAL
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Branchstock ledger and transfer integrity scan")
    parser.add_argument("--tenant", required=True, help="tenant id, or 'all'")
    parser.add_argument("--format", choices=["json", "text"], default="text")
    parser.add_argument("--fail-on-critical", action="store_true")
    parser.add_argument("--database-url", default=None, help="defaults to DATABASE_URL")
    args = parser.parse_args(argv)
    return run_scan(args.tenant, args.format, args.fail_on_critical, database_url=args.database_url)


if __name__ == "__main__":
    raise SystemExit(main())
