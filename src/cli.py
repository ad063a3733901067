#!/usr/bin/env python3
"""CLI entry point for work-agent.

Actions:
- reconcile: Run one reconciliation pass for a WorkOrder
- status: Show the stored status of a WorkOrder

Usage:
    work-agent reconcile -W <name> [-n <namespace>] [--config PATH] [--verbose] [--json-output]
    work-agent status -W <name> [-n <namespace>] [--config PATH] [--json-output]

The work queue that decides when to reconcile (and with what backoff) is
external; `reconcile` exits non-zero whenever the pass should be retried.
"""

import argparse
import json
import logging
import sys
from typing import Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes import dynamic
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from config import AgentConfig, ConfigError, load_agent_config
from workorder.applier import ResourceApplier
from workorder.clients import (
    ClientError,
    DiscoveryMapper,
    KubernetesDynamicClient,
    KubernetesTypedClient,
    KubernetesWorkStore,
    NotFoundError,
)
from workorder.controller import WorkOrderController
from workorder.types import WorkOrder, WorkOrderSyncError

logger = logging.getLogger(__name__)

COMMANDS = {
    "reconcile": "Run one reconciliation pass for a WorkOrder",
    "status": "Show the stored status of a WorkOrder",
}

# Raised while loading credentials or running discovery for a cluster
SETUP_ERRORS = (ConfigException, ApiException, ClientError)


def _common_parser(action: str) -> argparse.ArgumentParser:
    """Build argument parser with options shared by all actions."""
    parser = argparse.ArgumentParser(
        prog=f'work-agent {action}',
        description=COMMANDS[action],
    )
    parser.add_argument(
        '--work', '-W',
        required=True,
        help='WorkOrder name',
    )
    parser.add_argument(
        '--namespace', '-n',
        help='WorkOrder namespace (default: from config)',
    )
    parser.add_argument(
        '--config', '-c',
        help='Agent config file (override: WORK_AGENT_CONFIG env var)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _api_client(kubeconfig, context: Optional[str]) -> k8s_client.ApiClient:
    """Create an ApiClient from a kubeconfig, or in-cluster when none given."""
    if kubeconfig is None and context is None:
        configuration = k8s_client.Configuration()
        try:
            k8s_config.load_incluster_config(client_configuration=configuration)
            return k8s_client.ApiClient(configuration)
        except ConfigException:
            logger.debug("Not running in-cluster, using default kubeconfig")
    return k8s_config.new_client_from_config(
        config_file=str(kubeconfig) if kubeconfig else None,
        context=context,
    )


def build_store(config: AgentConfig) -> KubernetesWorkStore:
    """Create the WorkOrder store on the hub cluster."""
    return KubernetesWorkStore(
        _api_client(config.hub_kubeconfig, config.hub_context),
        group=config.work_group,
        version=config.work_version,
        plural=config.work_plural,
        request_timeout=config.request_timeout,
    )


def build_controller(config: AgentConfig) -> WorkOrderController:
    """Wire the controller to the hub store and spoke clients."""
    spoke = _api_client(config.spoke_kubeconfig, config.spoke_context)
    discovery = dynamic.DynamicClient(spoke)
    registry = config.typed_registry()
    mapper = DiscoveryMapper(discovery)
    applier = ResourceApplier.from_clients(
        registry,
        KubernetesTypedClient(spoke, registry, request_timeout=config.request_timeout),
        KubernetesDynamicClient(discovery, request_timeout=config.request_timeout),
        mapper,
    )
    return WorkOrderController(
        store=build_store(config),
        applier=applier,
        mapper=mapper,
        finalizer=config.finalizer,
        status_update_retries=config.status_update_retries,
    )


def _load_config(args) -> AgentConfig:
    try:
        return load_agent_config(args.config)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)


def _status_summary(work: WorkOrder) -> dict:
    """Flatten a WorkOrder's status for display."""
    manifests = []
    for mc in work.status.manifests:
        meta = mc.resource_meta
        entry = {
            'ordinal': meta.ordinal,
            'kind': meta.kind,
            'namespace': meta.namespace,
            'name': meta.name,
        }
        for cond in mc.conditions:
            entry[cond.type] = cond.status
            if cond.status != 'True' and cond.message:
                entry['message'] = cond.message
        manifests.append(entry)
    return {
        'work': work.key,
        'conditions': [c.to_dict() for c in work.status.conditions],
        'manifests': manifests,
    }


def _print_status(work: WorkOrder) -> None:
    summary = _status_summary(work)
    print(f"WorkOrder {summary['work']}")
    for cond in summary['conditions']:
        print(f"  {cond['type']}: {cond['status']} ({cond['reason']})")
    for m in summary['manifests']:
        target = f"{m['namespace']}/{m['name']}" if m['namespace'] else m['name']
        line = f"  [{m['ordinal']}] {m['kind']:20} {target:40} {m.get('ManifestApplied', 'Unknown')}"
        if 'message' in m:
            line += f"  {m['message']}"
        print(line)


def _fetch_written(controller: WorkOrderController, namespace: str, name: str) -> Optional[WorkOrder]:
    try:
        return controller.store.get(namespace, name)
    except ClientError as e:
        logger.warning(f"Could not read back WorkOrder {namespace}/{name}: {e}")
        return None


def reconcile_main(argv: list) -> int:
    """Handle 'reconcile' action."""
    args = _common_parser('reconcile').parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    config = _load_config(args)
    namespace = args.namespace or config.namespace

    try:
        controller = build_controller(config)
    except SETUP_ERRORS as e:
        print(f"Error connecting to cluster: {e}", file=sys.stderr)
        return 1
    logger.info(f"Reconciling WorkOrder {namespace}/{args.work}")

    rc = 0
    failures: dict = {}
    work = None
    try:
        work = controller.sync(namespace, args.work)
    except WorkOrderSyncError as e:
        logger.error(str(e))
        failures = e.failures
        rc = 1
        if e.phase == 'apply':
            # Status holding the per-manifest errors was written before the raise
            work = _fetch_written(controller, namespace, args.work)
    except ClientError as e:
        logger.error(f"Reconcile of {namespace}/{args.work} failed: {e}")
        rc = 1

    if args.json_output:
        output = {
            'work': f'{namespace}/{args.work}',
            'success': rc == 0,
            'failures': {str(k): v for k, v in failures.items()},
        }
        if work is not None:
            output['status'] = work.status.to_dict()
        print(json.dumps(output, indent=2))
    elif work is not None:
        _print_status(work)
    return rc


def status_main(argv: list) -> int:
    """Handle 'status' action."""
    args = _common_parser('status').parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    config = _load_config(args)
    namespace = args.namespace or config.namespace

    try:
        work = build_store(config).get(namespace, args.work)
    except NotFoundError:
        print(f"Error: WorkOrder {namespace}/{args.work} not found", file=sys.stderr)
        return 1
    except ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except SETUP_ERRORS as e:
        print(f"Error connecting to cluster: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        print(json.dumps(_status_summary(work), indent=2))
    else:
        _print_status(work)
    return 0


def main(argv: Optional[list] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] in ('-h', '--help'):
        print("Usage: work-agent <action> [options]")
        print()
        print("Actions:")
        for name, desc in COMMANDS.items():
            print(f"  {name:10} {desc}")
        print()
        print("Run 'work-agent <action> --help' for action-specific options.")
        return 1 if not argv else 0

    action, rest = argv[0], argv[1:]
    if action == 'reconcile':
        return reconcile_main(rest)
    if action == 'status':
        return status_main(rest)

    print(f"Error: Unknown action '{action}'", file=sys.stderr)
    return 1


if __name__ == '__main__':
    sys.exit(main())
