"""
Tests for migrate.py — the migration pipeline driven against mocked AWS clients.
"""

import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from botocore.exceptions import ClientError

sys.path.insert(0, str(Path(__file__).parent.parent))
import migrate
import utils
from sslib.config import build_config
from sslib.errors import ExistingStackError, MissingResourceError, PollTimeoutError, ProviderFailureError
from sslib.state import MigrationContext, MigrationState

CONFIG_DATA = {
    "migration": {
        "source": {
            "profile": "src",
            "region": "us-east-1",
            "infrastructure_stack_name": "src-infra",
            "migration_setup_stack_name": "src-setup",
        },
        "target": {
            "profile": "tgt",
            "region": "us-west-2",
            "infrastructure_stack_name": "tgt-infra",
            "migration_setup_stack_name": "tgt-setup",
            "cluster": {"node_type": "cache.t3.small"},
        },
        "options": {
            "snapshot": {"create_new": True, "poll_interval_seconds": 30, "max_attempts": 60},
            "export": {"poll_interval_seconds": 30, "max_attempts": 5},
        },
    }
}


def _cfn(stacks):
    """CloudFormation mock backed by {stack_name: {output_key: value}}."""
    client = MagicMock()

    def describe_stacks(StackName):
        if StackName not in stacks:
            raise ClientError(
                {"Error": {"Code": "ValidationError", "Message": f"Stack {StackName} does not exist"}},
                "DescribeStacks",
            )
        outputs = [{"OutputKey": k, "OutputValue": v} for k, v in stacks[StackName].items()]
        return {"Stacks": [{"StackName": StackName, "StackStatus": "CREATE_COMPLETE", "Outputs": outputs}]}

    client.describe_stacks.side_effect = describe_stacks
    return client


def _account(label, region, account_id, services):
    account = MagicMock()
    account.label = label
    account.region = region
    account.account_id = account_id
    account.partition = "aws"
    account.client.side_effect = lambda service: services[service]
    return account


@pytest.fixture
def calls():
    return []


@pytest.fixture
def aws(calls):
    """Mocked clients for both accounts, recording the order of state-changing calls."""
    source_cfn = _cfn({
        "src-infra": {"RedisClusterId": "c1"},
        "src-setup": {"ExportBucketName": "b1"},
    })
    target_stacks = {"tgt-setup": {"ImportBucketName": "b2"}}
    target_cfn = _cfn(target_stacks)

    def create_stack(**kwargs):
        calls.append("create_stack")
        target_stacks[kwargs["StackName"]] = {"RedisEndpoint": "tgt.cache.amazonaws.com"}

    target_cfn.create_stack.side_effect = create_stack

    elasticache = MagicMock()
    elasticache.describe_cache_clusters.return_value = {
        "CacheClusters": [{
            "CacheClusterId": "c1",
            "CacheNodeType": "cache.t3.micro",
            "EngineVersion": "7.0.7",
            "CacheNodes": [{"Endpoint": {"Address": "src.cache.amazonaws.com", "Port": 6379}}],
        }]
    }
    elasticache.create_snapshot.side_effect = lambda **kw: calls.append("create_snapshot")
    elasticache.describe_snapshots.side_effect = [
        {"Snapshots": [{"SnapshotStatus": s}]} for s in ("creating", "creating", "available")
    ]
    elasticache.copy_snapshot.side_effect = lambda **kw: calls.append("copy_snapshot")

    exports = iter([{}, {"KeyCount": 0}, None])

    def list_objects_v2(Bucket, Prefix):
        response = next(exports, None)
        if response is not None:
            return response
        return {"Contents": [{"Key": f"{Prefix}-0001.rdb"}, {"Key": f"{Prefix}-0001.rdb.tmp"}]}

    source_s3 = MagicMock()
    source_s3.list_objects_v2.side_effect = list_objects_v2

    target_s3 = MagicMock()
    target_s3.list_buckets.return_value = {"Owner": {"ID": "target-owner"}}
    target_s3.put_object_acl.side_effect = lambda **kw: calls.append("put_object_acl")

    source = _account("source", "us-east-1", "111111111111",
                      {"cloudformation": source_cfn, "elasticache": elasticache, "s3": source_s3})
    target = _account("target", "us-west-2", "222222222222",
                      {"cloudformation": target_cfn, "s3": target_s3})
    return {
        "source": source,
        "target": target,
        "elasticache": elasticache,
        "source_s3": source_s3,
        "target_s3": target_s3,
        "target_cfn": target_cfn,
        "target_stacks": target_stacks,
    }


@pytest.fixture
def ctx(aws):
    return MigrationContext(config=build_config(CONFIG_DATA), source=aws["source"], target=aws["target"])


@pytest.fixture
def copy_object(monkeypatch, calls):
    def fake_copy(*args):
        calls.append("copy_object")
        return 1024

    mock = MagicMock(side_effect=fake_copy)
    monkeypatch.setattr(migrate, "copy_object_via_local_file", mock)
    return mock


class TestPreliminaryChecks:
    def test_all_stacks_present(self, ctx):
        migrate.verify_stacks(ctx)

    def test_missing_stack_named(self, ctx, aws):
        del aws["target_stacks"]["tgt-setup"]
        with pytest.raises(MissingResourceError, match="tgt-setup"):
            migrate.verify_stacks(ctx)

    def test_cluster_info(self, ctx):
        cluster = migrate.get_cluster_info(ctx)
        assert cluster.cluster_id == "c1"
        assert cluster.node_type == "cache.t3.micro"
        assert cluster.endpoint_port == 6379

    def test_cluster_not_found(self, ctx, aws):
        aws["elasticache"].describe_cache_clusters.side_effect = ClientError(
            {"Error": {"Code": "CacheClusterNotFound", "Message": "nope"}}, "DescribeCacheClusters"
        )
        with pytest.raises(MissingResourceError, match="c1"):
            migrate.get_cluster_info(ctx)


class TestSnapshot:
    def test_name_format(self):
        assert migrate.snapshot_name_for(datetime(2026, 3, 4, 5, 6, 7)) == "migration-20260304-050607"

    def test_available_after_three_polls(self, ctx, aws):
        migrate.get_cluster_info(ctx)
        sleep = MagicMock()
        descriptor = migrate.create_snapshot(ctx, sleep=sleep, now=datetime(2026, 3, 4, 5, 6, 7))

        assert descriptor.name == "migration-20260304-050607"
        assert aws["elasticache"].describe_snapshots.call_count == 3
        assert [c.args for c in sleep.call_args_list] == [(30,), (30,)]
        assert ctx.state is MigrationState.SNAPSHOT_READY
        aws["elasticache"].create_snapshot.assert_called_once_with(
            CacheClusterId="c1", SnapshotName="migration-20260304-050607"
        )

    def test_failed_snapshot_stops_before_export(self, ctx, aws):
        aws["elasticache"].describe_snapshots.side_effect = [
            {"Snapshots": [{"SnapshotStatus": "creating"}]},
            {"Snapshots": [{"SnapshotStatus": "failed"}]},
        ]
        migrate.get_cluster_info(ctx)
        with pytest.raises(ProviderFailureError):
            migrate.create_snapshot(ctx, sleep=MagicMock())
        assert ctx.state is MigrationState.NOT_STARTED
        aws["elasticache"].copy_snapshot.assert_not_called()

    def test_existing_snapshot_adopted(self, aws):
        data = yaml.safe_load(yaml.safe_dump(CONFIG_DATA))
        data["migration"]["options"]["snapshot"] = {"create_new": False, "existing_snapshot_name": "nightly"}
        ctx = MigrationContext(config=build_config(data), source=aws["source"], target=aws["target"])

        descriptor = migrate.create_snapshot(ctx, sleep=MagicMock())

        assert descriptor.name == "nightly"
        assert ctx.snapshot_name == "nightly"
        aws["elasticache"].create_snapshot.assert_not_called()
        aws["elasticache"].describe_snapshots.assert_not_called()


class TestExport:
    def _ready(self, ctx):
        ctx.snapshot_name = "migration-20260304-050607"
        ctx.advance(MigrationState.SNAPSHOT_READY)

    def test_waits_for_rdb_object(self, ctx, aws):
        self._ready(ctx)
        key = migrate.export_to_s3(ctx, sleep=MagicMock())

        assert key == "migration-20260304-050607-export-0001.rdb"
        assert aws["source_s3"].list_objects_v2.call_count == 3
        aws["elasticache"].copy_snapshot.assert_called_once_with(
            SourceSnapshotName="migration-20260304-050607",
            TargetSnapshotName="migration-20260304-050607-export",
            TargetBucket="b1",
        )
        assert ctx.state is MigrationState.EXPORTED

    def test_export_wait_is_bounded(self, ctx, aws):
        self._ready(ctx)
        aws["source_s3"].list_objects_v2.side_effect = None
        aws["source_s3"].list_objects_v2.return_value = {}
        with pytest.raises(PollTimeoutError):
            migrate.export_to_s3(ctx, sleep=MagicMock())
        assert aws["source_s3"].list_objects_v2.call_count == 5

    def test_missing_export_bucket(self, ctx, aws):
        self._ready(ctx)
        aws["source"].client("cloudformation").describe_stacks.side_effect = lambda StackName: {
            "Stacks": [{"StackName": StackName, "StackStatus": "CREATE_COMPLETE", "Outputs": []}]
        }
        with pytest.raises(MissingResourceError, match="export bucket"):
            migrate.export_to_s3(ctx, sleep=MagicMock())
        aws["elasticache"].copy_snapshot.assert_not_called()


class TestCopyToTarget:
    def test_copy_and_grant(self, ctx, aws, copy_object):
        ctx.state = MigrationState.EXPORTED
        ctx.export_bucket = "b1"
        ctx.rdb_file = "snap-export-0001.rdb"

        assert migrate.copy_to_target(ctx) == "b2/snap-export-0001.rdb"

        copy_object.assert_called_once_with(
            aws["source_s3"], "b1", "snap-export-0001.rdb", aws["target_s3"], "b2"
        )
        kwargs = aws["target_s3"].put_object_acl.call_args.kwargs
        assert kwargs["GrantFullControl"] == "id=target-owner"
        assert kwargs["GrantRead"] == f"id={migrate.ELASTICACHE_CANONICAL_USER_ID}"
        assert ctx.state is MigrationState.COPIED_TO_TARGET

    def test_canonical_id_from_stack_output(self, ctx, aws, copy_object):
        aws["target_stacks"]["tgt-setup"]["ElastiCacheCanonicalUserId"] = "from-stack"
        ctx.state = MigrationState.EXPORTED
        ctx.export_bucket = "b1"
        ctx.rdb_file = "k.rdb"

        migrate.copy_to_target(ctx)

        assert aws["target_s3"].put_object_acl.call_args.kwargs["GrantRead"] == "id=from-stack"


class TestTargetCluster:
    def _copied(self, ctx):
        ctx.state = MigrationState.COPIED_TO_TARGET
        ctx.snapshot_name = "snap"
        ctx.import_bucket = "b2"
        ctx.rdb_file = "snap-export-0001.rdb"

    def test_creates_stack_with_import_parameters(self, ctx, aws):
        self._copied(ctx)
        assert migrate.create_target_cluster(ctx) is True

        kwargs = aws["target_cfn"].create_stack.call_args.kwargs
        params = {p["ParameterKey"]: p["ParameterValue"] for p in kwargs["Parameters"]}
        assert params == {
            "RedisNodeType": "cache.t3.small",
            "EnablePersistence": "true",
            "ImportFromS3": "true",
            "S3ImportPath": "b2/snap-export-0001.rdb",
            "SourceAccountId": "111111111111",
        }
        assert "AWS::ElastiCache::CacheCluster" in kwargs["TemplateBody"]
        assert {"Key": "redis-migration:component", "Value": "target-infrastructure"} in kwargs["Tags"]
        aws["target_cfn"].get_waiter.assert_called_with("stack_create_complete")
        assert ctx.target_stack_created is True
        assert ctx.state is MigrationState.CLUSTER_CREATED

    def test_existing_stack_is_an_error(self, ctx, aws):
        self._copied(ctx)
        aws["target_stacks"]["tgt-infra"] = {}
        with pytest.raises(ExistingStackError, match="--skip-existing-target"):
            migrate.create_target_cluster(ctx)
        aws["target_cfn"].create_stack.assert_not_called()

    def test_existing_stack_skipped_on_request(self, ctx, aws):
        self._copied(ctx)
        aws["target_stacks"]["tgt-infra"] = {}
        assert migrate.create_target_cluster(ctx, skip_existing=True) is False
        aws["target_cfn"].create_stack.assert_not_called()
        assert ctx.extras["cluster_skipped"] is True
        assert ctx.target_stack_created is False
        assert ctx.state is MigrationState.CLUSTER_CREATED


class TestRunMigration:
    def test_end_to_end_order_and_report(self, ctx, calls, copy_object, tmp_path):
        migrate.run_migration(ctx, sleep=MagicMock(), output_dir=tmp_path)

        assert calls == ["create_snapshot", "copy_snapshot", "copy_object", "put_object_acl", "create_stack"]
        assert ctx.state is MigrationState.REPORTED

        report = Path(ctx.report_path).read_text()
        for value in ("c1", ctx.snapshot_name, "b1", "b2", ctx.rdb_file):
            assert value in report
        assert "[x] Target cluster created" in report

    def test_failure_leaves_later_steps_untouched(self, ctx, aws, calls, copy_object, tmp_path):
        aws["elasticache"].describe_snapshots.side_effect = [{"Snapshots": [{"SnapshotStatus": "failed"}]}]
        with pytest.raises(ProviderFailureError):
            migrate.run_migration(ctx, sleep=MagicMock(), output_dir=tmp_path)
        assert calls == ["create_snapshot"]
        assert list(tmp_path.iterdir()) == []


class TestMain:
    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        monkeypatch.setattr(utils, "setup_logging", lambda *args, **kwargs: None)

    def test_missing_field_fails_before_any_aws_call(self, tmp_path, monkeypatch):
        data = yaml.safe_load(yaml.safe_dump(CONFIG_DATA))
        del data["migration"]["target"]["cluster"]
        config_file = tmp_path / "migration-config.yaml"
        config_file.write_text(yaml.safe_dump(data))
        account_cls = MagicMock()
        monkeypatch.setattr(migrate, "AwsAccount", account_cls)

        assert migrate.main([str(config_file)]) == 1
        account_cls.assert_not_called()

    def test_zero_max_attempts_is_a_config_error(self, tmp_path, monkeypatch):
        data = yaml.safe_load(yaml.safe_dump(CONFIG_DATA))
        data["migration"].setdefault("options", {})["export"] = {"max_attempts": 0}
        config_file = tmp_path / "migration-config.yaml"
        config_file.write_text(yaml.safe_dump(data))
        account_cls = MagicMock()
        monkeypatch.setattr(migrate, "AwsAccount", account_cls)

        assert migrate.main([str(config_file)]) == 1
        account_cls.assert_not_called()

    def test_missing_config_file(self, tmp_path, monkeypatch):
        account_cls = MagicMock()
        monkeypatch.setattr(migrate, "AwsAccount", account_cls)
        assert migrate.main([str(tmp_path / "absent.yaml")]) == 1
        account_cls.assert_not_called()

    def test_success_returns_zero(self, tmp_path, monkeypatch, ctx):
        config_file = tmp_path / "migration-config.yaml"
        config_file.write_text(yaml.safe_dump(CONFIG_DATA))
        monkeypatch.setattr(migrate, "build_context", lambda config: ctx)
        monkeypatch.setattr(utils, "verify_account_credentials", lambda accounts: None)
        run = MagicMock(return_value=ctx)
        monkeypatch.setattr(migrate, "run_migration", run)

        assert migrate.main([str(config_file), "--skip-existing-target"]) == 0
        assert run.call_args.kwargs["skip_existing_target"] is True

    def test_provider_failure_returns_one(self, tmp_path, monkeypatch, ctx):
        config_file = tmp_path / "migration-config.yaml"
        config_file.write_text(yaml.safe_dump(CONFIG_DATA))
        monkeypatch.setattr(migrate, "build_context", lambda config: ctx)
        monkeypatch.setattr(utils, "verify_account_credentials", lambda accounts: None)
        monkeypatch.setattr(migrate, "run_migration", MagicMock(side_effect=ProviderFailureError("snapshot failed")))

        assert migrate.main([str(config_file)]) == 1
