"""Tests for workorder.types module."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import T0
from workorder.types import (
    MANIFEST_APPLIED,
    WORK_APPLIED,
    ManifestCondition,
    ManifestDecodeError,
    ManifestResourceMeta,
    StatusCondition,
    WorkOrder,
    WorkOrderStatus,
    WorkOrderSyncError,
    decode_manifest,
    format_time,
    parse_time,
    split_api_version,
    utcnow,
)

STORED = {
    'apiVersion': 'work.homestak.dev/v1',
    'kind': 'WorkOrder',
    'metadata': {
        'name': 'work1',
        'namespace': 'cluster1',
        'resourceVersion': '42',
        'finalizers': ['work.homestak.dev/cleanup'],
        'labels': {'team': 'infra'},
    },
    'spec': {
        'manifests': [
            {'apiVersion': 'v1', 'kind': 'Secret', 'metadata': {'name': 's', 'namespace': 'ns1'}},
        ],
    },
    'status': {
        'manifests': [{
            'resourceMeta': {'ordinal': 0, 'version': 'v1', 'kind': 'Secret',
                             'resource': 'secrets', 'namespace': 'ns1', 'name': 's'},
            'conditions': [{'type': 'ManifestApplied', 'status': 'True',
                            'reason': 'AppliedManifestComplete', 'message': 'Apply manifest complete',
                            'lastTransitionTime': '2026-01-01T12:00:00Z'}],
        }],
        'conditions': [{'type': 'Applied', 'status': 'True',
                        'reason': 'AppliedWorkOrderComplete', 'message': 'Apply work order complete',
                        'lastTransitionTime': '2026-01-01T12:00:00Z'}],
    },
}


class TestDecodeManifest:
    """Tests for decode_manifest()."""

    def test_mapping(self):
        raw = {'apiVersion': 'v1', 'kind': 'ConfigMap', 'metadata': {'name': 'c'}}
        obj = decode_manifest(raw)
        assert obj == raw
        assert obj is not raw

    def test_deep_copy(self):
        raw = {'apiVersion': 'v1', 'kind': 'ConfigMap', 'metadata': {'name': 'c'}}
        decode_manifest(raw)['metadata']['name'] = 'changed'
        assert raw['metadata']['name'] == 'c'

    def test_json_string(self):
        obj = decode_manifest('{"apiVersion": "v1", "kind": "Secret", "metadata": {"name": "s"}}')
        assert obj['kind'] == 'Secret'

    def test_yaml_bytes(self):
        obj = decode_manifest(b'apiVersion: apps/v1\nkind: Deployment\nmetadata:\n  name: web\n')
        assert obj['apiVersion'] == 'apps/v1'
        assert obj['metadata'] == {'name': 'web'}

    @pytest.mark.parametrize('raw,match', [
        ('not: [valid', 'Invalid manifest payload'),
        ('- a\n- b\n', 'must be an object'),
        (None, 'must be an object'),
        ({'kind': 'Secret', 'metadata': {'name': 's'}}, "'apiVersion'"),
        ({'apiVersion': 'v1', 'metadata': {'name': 's'}}, "'kind'"),
        ({'apiVersion': 'v1', 'kind': 'Secret'}, "'metadata.name'"),
        ({'apiVersion': 'v1', 'kind': 'Secret', 'metadata': {}}, "'metadata.name'"),
        ({'apiVersion': '', 'kind': 'Secret', 'metadata': {'name': 's'}}, "'apiVersion'"),
    ], ids=['bad yaml', 'list', 'none', 'no apiVersion', 'no kind', 'no metadata',
            'no name', 'empty apiVersion'])
    def test_invalid(self, raw, match):
        with pytest.raises(ManifestDecodeError, match=match):
            decode_manifest(raw)


class TestHelpers:
    """Tests for time and apiVersion helpers."""

    def test_split_core(self):
        assert split_api_version('v1') == ('', 'v1')

    def test_split_grouped(self):
        assert split_api_version('rbac.authorization.k8s.io/v1') == ('rbac.authorization.k8s.io', 'v1')

    def test_format_and_parse(self):
        assert format_time(T0) == '2026-01-01T12:00:00Z'
        assert parse_time('2026-01-01T12:00:00Z') == T0

    def test_none_passthrough(self):
        assert format_time(None) is None
        assert parse_time(None) is None
        assert parse_time('') is None

    def test_utcnow_whole_seconds(self):
        now = utcnow()
        assert now.tzinfo == timezone.utc
        assert now.microsecond == 0

    def test_format_converts_to_utc(self):
        local = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_time(local) == '2026-01-01T12:00:00Z'

    @pytest.mark.parametrize('value,expected', [
        ('2026-01-01T12:00:00.123456Z', T0.replace(microsecond=123456)),
        ('2026-01-01T12:00:00.5Z', T0.replace(microsecond=500000)),
        ('2026-01-01T12:00:00.123456789Z', T0.replace(microsecond=123456)),
        ('2026-01-01T12:00:00+00:00', T0),
        ('2026-01-01T14:00:00+02:00', T0),
        ('2026-01-01t12:00:00z', T0),
        ('2026-01-01T12:00:00', T0),
    ])
    def test_parse_rfc3339_variants(self, value, expected):
        parsed = parse_time(value)
        assert parsed == expected
        assert parsed.tzinfo == timezone.utc

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match='Invalid RFC 3339 timestamp'):
            parse_time('yesterday')

    def test_stored_fractional_timestamps(self):
        data = json.loads(json.dumps(STORED))
        data['metadata']['deletionTimestamp'] = '2026-01-01T12:00:00.250+00:00'
        work = WorkOrder.from_dict(data)
        assert work.deletion_timestamp == T0.replace(microsecond=250000)
        assert work.to_dict()['metadata']['deletionTimestamp'] == '2026-01-01T12:00:00Z'


class TestResourceMeta:
    """Tests for ManifestResourceMeta."""

    def test_api_version(self):
        assert ManifestResourceMeta(group='apps', version='v1').api_version == 'apps/v1'
        assert ManifestResourceMeta(version='v1').api_version == 'v1'

    def test_to_dict_omits_empty(self):
        assert ManifestResourceMeta(ordinal=2, kind='Secret').to_dict() == {'ordinal': 2, 'kind': 'Secret'}


class TestWorkOrder:
    """Tests for WorkOrder serialization."""

    def test_from_dict(self):
        work = WorkOrder.from_dict(STORED)
        assert work.key == 'cluster1/work1'
        assert work.resource_version == '42'
        assert work.finalizers == ['work.homestak.dev/cleanup']
        assert not work.is_terminating
        assert len(work.manifests) == 1
        mc = work.status.manifests[0]
        assert mc.resource_meta.resource == 'secrets'
        assert mc.get_condition(MANIFEST_APPLIED).last_transition_time == T0
        assert work.status.get_condition(WORK_APPLIED).status == 'True'

    def test_to_dict_round_trip_preserves_unknown_fields(self):
        data = WorkOrder.from_dict(STORED).to_dict()
        assert data == STORED

    def test_to_dict_writes_status(self):
        work = WorkOrder.from_dict(STORED)
        work.status = WorkOrderStatus(conditions=[
            StatusCondition(type=WORK_APPLIED, status='False', last_transition_time=T0)])
        data = work.to_dict()
        assert data['status'] == {
            'manifests': [],
            'conditions': [{'type': 'Applied', 'status': 'False', 'reason': '', 'message': '',
                            'lastTransitionTime': '2026-01-01T12:00:00Z'}],
        }

    def test_to_dict_drops_cleared_finalizers(self):
        work = WorkOrder.from_dict(STORED)
        work.finalizers = []
        assert 'finalizers' not in work.to_dict()['metadata']

    def test_terminating(self):
        data = json.loads(json.dumps(STORED))
        data['metadata']['deletionTimestamp'] = '2026-01-01T12:00:00Z'
        work = WorkOrder.from_dict(data)
        assert work.is_terminating
        assert work.deletion_timestamp == T0

    def test_minimal(self):
        work = WorkOrder.from_dict({'metadata': {'name': 'w'}})
        assert work.key == 'w'
        assert work.manifests == []
        assert work.status == WorkOrderStatus()

    def test_to_json(self):
        assert json.loads(WorkOrder.from_dict(STORED).to_json())['metadata']['name'] == 'work1'

    def test_condition_without_time(self):
        cond = StatusCondition.from_dict({'type': 'X'})
        assert cond.status == 'Unknown'
        assert 'lastTransitionTime' not in cond.to_dict()

    def test_manifest_condition_missing_meta(self):
        mc = ManifestCondition.from_dict({'conditions': None})
        assert mc.resource_meta == ManifestResourceMeta()
        assert mc.get_condition(MANIFEST_APPLIED) is None


class TestWorkOrderSyncError:
    """Tests for WorkOrderSyncError."""

    def test_message_lists_failures_in_order(self):
        err = WorkOrderSyncError('cluster1/work1', {3: 'boom', 1: 'Fake error'})
        assert str(err) == ('WorkOrder cluster1/work1: apply failed for 2 manifest(s): '
                            '[1] Fake error; [3] boom')
        assert err.phase == 'apply'

    def test_cleanup_phase(self):
        err = WorkOrderSyncError('ns/w', {0: 'x'}, phase='cleanup')
        assert 'cleanup failed' in str(err)
