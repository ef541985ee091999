import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

from .logsetup import get_logger

load_dotenv()

logr = get_logger('config')

######################################################################
#
# Every key can be set in the YAML file and overridden by the env var
# of the same name in upper case (eg. vp_calc_chunk_size ->
# VP_CALC_CHUNK_SIZE).  Env values are cast to the type of the default.
#
######################################################################

DEFAULTS = {
    'friendly_short_name': 'SUP',
    'port': 3000,
    'data_dir': './data',

    # Base (L2) and Ethereum (L1) deployments
    'rpc_url': '',
    'l1_rpc_url': '',
    'token_address': '',
    'l1_token_address': '',
    'locker_factory_address': '',
    'ep_program_manager': '',
    'staking_reward_controller': '',
    'vesting_factory': '',
    'dao_treasury': '',
    'foundation_treasury': '',

    # Indexed sources
    'subgraph_url': '',
    'vesting_subgraph_url': '',
    'locker_subgraph_url': '',
    'graph_network_api_key': '',
    'delegation_subgraph_id': '',
    'delegation_subgraph_url': '',

    # Snapshot
    'snapshot_space': '',
    'snapshot_hub_url': 'https://hub.snapshot.org/graphql',
    'snapshot_score_url': 'https://score.snapshot.org',

    # Extra accounts & constants
    'additional_holders_file': './asupHolders.json',
    'additional_total_score': 0,

    # Batching
    'vp_calc_chunk_size': 500,
    'balance_batch_size': 100,
    'rpc_concurrency': 20,

    # Refresh cadence in seconds, 0 disables the periodic refresh.
    'scores_update_interval': 24 * 60 * 60,
    'distribution_update_interval': 60 * 60,

    # Per call-class timeouts (seconds) & bounded retries
    'graph_timeout': 30,
    'graph_max_tries': 3,
    'score_timeout': 120,
    'score_max_tries': 3,
    'rpc_timeout': 25,
    'rpc_max_tries': 3,
}

SECRETS = ('rpc_url', 'l1_rpc_url', 'graph_network_api_key', 'delegation_subgraph_url')

def cast_like(default, value):
    if isinstance(default, bool):
        return str(value).lower() in ('true', '1', 'yes')
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value

def load_config(path=None, env=None):
    """defaults <- YAML file <- environment"""

    env = os.environ if env is None else env

    config = dict(DEFAULTS)

    path = Path(path or env.get('SUP_METRICS_CONFIG_FILE', './config.yaml'))

    try:
        with open(path, 'r') as f:
            from_file = yaml.safe_load(f) or {}
        config.update(from_file)
        logr.info(f"Loaded config from {path}")
    except FileNotFoundError:
        logr.warning(f"No config file at {path}, using defaults and environment only.")

    for key, default in DEFAULTS.items():
        value = env.get(key.upper())
        if value not in (None, ''):
            try:
                config[key] = cast_like(default, value)
            except ValueError:
                raise ValueError(f"Environment variable {key.upper()}={value!r} is not a valid {type(default).__name__}")

    if not config['delegation_subgraph_url'] and config['delegation_subgraph_id']:
        config['delegation_subgraph_url'] = (f"https://gateway.thegraph.com/api/{config['graph_network_api_key']}"
                                             f"/subgraphs/id/{config['delegation_subgraph_id']}")

    return config

def public_config(config):
    return {
        'tokenAddress': config['token_address'],
        'lockerFactoryAddress': config['locker_factory_address'],
        'snapshotSpace': config['snapshot_space'],
        'snapshotHubUrl': config['snapshot_hub_url'],
    }

def secret_text(t, n):
    if len(t) > ((2 * n) + 3):
        return t[:n] + "..." + t[-1 * n:]
    else:
        return t[:n] + "***..."

def loggable_config(config):
    return {k: (secret_text(str(v), 6) if (k in SECRETS and v) else v) for k, v in config.items()}
