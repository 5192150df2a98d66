"""
sslib.report — Migration report rendering.

Pure formatting: the collected context values are substituted into a fixed
Markdown template. Writing errors propagate to the caller.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from sslib.state import MigrationContext

logger = logging.getLogger(__name__)

REPORT_TEMPLATE = """# ElastiCache Redis Migration Report

**Date**: {date}

## Source Environment
- **Profile**: {source_profile}
- **Region**: {source_region}
- **Cluster ID**: {cluster_id}
- **Node Type**: {node_type}
- **Engine Version**: {engine_version}

## Target Environment
- **Profile**: {target_profile}
- **Region**: {target_region}
- **Node Type**: {target_node_type}
- **Infrastructure Stack**: {target_stack}

## Migration Details
- **Snapshot Name**: {snapshot_name}
- **Export Bucket**: {export_bucket}
- **Import Bucket**: {import_bucket}
- **RDB File**: {rdb_file}

## Status
- [x] Snapshot created/verified
- [x] Exported to S3
- [x] Copied to target account
- [{cluster_mark}] Target cluster created

## Next Steps
1. Validate the migration: `python scripts/validate_migration.py {config_path}`
2. Clean up scaffolding when satisfied: `python cleanup.py {config_path}`
"""


def report_filename(when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    return f"migration-report-{when.strftime('%Y%m%d-%H%M%S')}.md"


def render_report(context: MigrationContext, when: Optional[datetime] = None) -> str:
    """Render the report text for a finished (or cluster-skipped) migration."""
    config = context.config
    cluster = context.cluster
    return REPORT_TEMPLATE.format(
        date=(when or datetime.now()).strftime("%a %b %d %H:%M:%S %Y"),
        source_profile=config.source.profile,
        source_region=config.source.region,
        cluster_id=context.cluster_id,
        node_type=cluster.node_type if cluster else "",
        engine_version=cluster.engine_version if cluster else "",
        target_profile=config.target.profile,
        target_region=config.target.region,
        target_node_type=config.target_node_type,
        target_stack=config.target.infrastructure_stack_name,
        snapshot_name=context.snapshot_name,
        export_bucket=context.export_bucket,
        import_bucket=context.import_bucket,
        rdb_file=context.rdb_file,
        cluster_mark="x" if context.target_stack_created else " ",
        config_path=config.path or "migration-config.yaml",
    )


def write_report(context: MigrationContext, output_dir: Union[str, Path], when: Optional[datetime] = None) -> Path:
    """
    Write the Markdown report into ``output_dir``.

    Returns:
        Path: the report file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / report_filename(when)
    path.write_text(render_report(context, when), encoding="utf-8")
    logger.debug("Report written to %s", path)
    return path
