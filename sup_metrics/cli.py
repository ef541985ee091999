#!/usr/bin/env python3
from dotenv import load_dotenv

load_dotenv()

import asyncio
from datetime import datetime, timezone
from pprint import pprint

from argh import arg, dispatch_commands

from .config import load_config
from .context import MetricsContext
from . import data_models

METRICS = ['unified_scores', 'distribution_metrics']

def build_context(config_file=None):
    return MetricsContext().build(load_config(config_file))

async def run_refresh(ctx, metric):
    manager = ctx.managers[metric]
    manager.load()
    try:
        return await manager.refresh()
    finally:
        await ctx.close()

def summarize(metric, data):
    if metric == 'unified_scores':
        members = data['members']
        return {
            'daoMembersCount': data_models.dao_members_count(members),
            'totalDelegatedScore': data_models.total_delegated_score(members),
            'delegates': len(data_models.per_delegate_scores(members)),
            'totalScore': data_models.total_score(data),
        }
    return data_models.distribution_metrics(data)

def print_snapshot(manager, metric):
    data, last_updated_at = manager.get_current()
    when = datetime.fromtimestamp(last_updated_at, tz=timezone.utc).isoformat() if last_updated_at else 'never'
    print(f"{metric} last updated at {last_updated_at} ({when})")
    pprint(summarize(metric, data))

@arg('metric', choices=METRICS, help='Metric to compute.')
@arg('--config-file', help='YAML config, defaults to $SUP_METRICS_CONFIG_FILE or ./config.yaml')
def refresh(metric, config_file=None):
    """Compute one metric now and persist it, like a scheduled refresh would."""

    ctx = build_context(config_file)

    ok = asyncio.run(run_refresh(ctx, metric))

    if not ok:
        raise RuntimeError(f"Refresh of {metric} failed, the persisted snapshot was left as it was.")

    print_snapshot(ctx.managers[metric], metric)

@arg('metric', choices=METRICS, help='Metric to show.')
@arg('--config-file', help='YAML config, defaults to $SUP_METRICS_CONFIG_FILE or ./config.yaml')
def show(metric, config_file=None):
    """Summary of the persisted snapshot of one metric."""

    ctx = build_context(config_file)
    manager = ctx.managers[metric]

    if not manager.load():
        print(f"No usable snapshot of {metric} in {ctx.config['data_dir']}")
        return

    print_snapshot(manager, metric)

if __name__ == '__main__':
    dispatch_commands([refresh, show])
