from dotenv import load_dotenv

load_dotenv()

import os
import socket
from datetime import datetime
from textwrap import dedent
from importlib.metadata import version as importlib_version, PackageNotFoundError

import yaml
from eth_utils import is_address
from sanic_ext import openapi
from sanic import Sanic
from sanic.response import json
from sanic.log import logger as logr

from . import __version__
from . import data_models
from .clients_graph import latest_delegate, format_http_error
from .config import load_config, loggable_config, public_config
from .context import MetricsContext
from .logsetup import get_logger
from .middleware import start_timer, add_server_timing_header, add_cors_headers, measure
from .utils import now_ts

BOOT_TIME = datetime.now().isoformat()

GIT_COMMIT_SHA = os.getenv('GIT_COMMIT_SHA', 'n/a')

glogr = get_logger('global')

glogr.info(f"{BOOT_TIME=}")
glogr.info(f"GIT_COMMIT_SHA={GIT_COMMIT_SHA}")

######################################################################
#
# Config: defaults <- YAML (SUP_METRICS_CONFIG_FILE) <- environment
#
######################################################################

config = load_config()

glogr.info(loggable_config(config))

app = Sanic('SupMetrics', ctx=MetricsContext())
app.middleware('request')(start_timer)
app.middleware('response')(add_server_timing_header)
app.middleware('response')(add_cors_headers)

def bad_request(message):
    return json({'error': message}, status=400)

def unified_members(app):
    data, last_updated_at = app.ctx.unified_scores.get_current()
    return data['members'], last_updated_at

def parse_bool(value):
    return str(value).lower() in ('true', '1', 'yes')

######################################################################
#
# Application Endpoints
#
######################################################################

@app.route('/v1/dao_members_count')
@openapi.tag("Token Metrics")
@openapi.summary("Number of DAO members")
@openapi.description("""
## Description
The number of accounts with a stake in governance: owners of the lockers connected to a
distribution pool, vesting receivers, additional holders, delegators and delegates.

## Methodology
Periodically refreshed in the background.  The time of the last refresh is returned.
""")
@measure
async def dao_members_count(request):
    return await dao_members_count_handler(app, request)

async def dao_members_count_handler(app, request):
    members, last_updated_at = unified_members(app)
    return json({'daoMembersCount': data_models.dao_members_count(members),
                 'lastUpdatedAt': last_updated_at})

#################################################################################################################################################

@app.route('/v1/total_delegated_score')
@openapi.tag("Token Metrics")
@openapi.summary("Cumulated score of all delegations")
@openapi.description("""
## Description
The sum of the voting power delegated to all delegates of the space, and the
breakdown per delegate.

## Methodology
Own voting power of every delegator is scored with the space's strategies, without the
delegation strategy, and added up per delegate.  Only delegators with voting power count.
""")
@measure
async def total_delegated_score(request):
    return await total_delegated_score_handler(app, request)

async def total_delegated_score_handler(app, request):
    members, last_updated_at = unified_members(app)
    return json({'totalDelegatedScore': data_models.total_delegated_score(members),
                 'perDelegateScore': data_models.per_delegate_scores(members),
                 'lastUpdatedAt': last_updated_at})

#################################################################################################################################################

@app.route('/v1/dao_members')
@openapi.tag("Token Metrics")
@openapi.summary("DAO members with their voting power & delegation status")
@openapi.parameter(
    "min_vp",
    float,
    location="query",
    required=False,
    default=0,
    description="Minimum own voting power of the members returned."
)
@openapi.parameter(
    "include_all_delegates",
    bool,
    location="query",
    required=False,
    default=False,
    description="Return delegates regardless of min_vp."
)
@measure
async def dao_members(request):
    return await dao_members_handler(app, request)

async def dao_members_handler(app, request):

    try:
        min_vp = float(request.args.get("min_vp", 0))
    except ValueError:
        return bad_request("min_vp must be a number")

    include_all_delegates = parse_bool(request.args.get("include_all_delegates", "false"))

    members, last_updated_at = unified_members(app)

    res = data_models.dao_members_with_filters(members, min_vp, include_all_delegates)
    res['lastUpdatedAt'] = last_updated_at

    return json(res)

#################################################################################################################################################

@app.route('/v1/total_score')
@openapi.tag("Token Metrics")
@openapi.summary("Total amount distributed through the program's pools")
@openapi.description("""
## Description
Tokens distributed by the program manager through its flow distribution pools, extrapolated
to the time of the last refresh, plus a configured constant for distributions outside the pools.
""")
@measure
async def total_score(request):
    return await total_score_handler(app, request)

async def total_score_handler(app, request):
    data, last_updated_at = app.ctx.unified_scores.get_current()
    res = dict(data_models.total_score(data))
    res['lastUpdatedAt'] = last_updated_at
    return json(res)

#################################################################################################################################################

@app.route('/v1/distribution_metrics')
@openapi.tag("Token Metrics")
@openapi.summary("Breakdown of the total supply")
@openapi.description("""
## Description
Where the total supply sits: locker reserves, staked and LP positions, fountains, the
community charge, investor & team vesting, the DAO and foundation treasuries, and the rest.

## Methodology
All values are whole tokens.  `other` is the total supply minus all named categories.
""")
@measure
async def distribution_metrics(request):
    return await distribution_metrics_handler(app, request)

async def distribution_metrics_handler(app, request):
    data, last_updated_at = app.ctx.distribution_metrics.get_current()
    return json({'metrics': data_models.distribution_metrics(data),
                 'lastUpdatedAt': last_updated_at})

#################################################################################################################################################

@app.route('/v1/user_score')
@openapi.tag("User Metrics")
@openapi.summary("Live voting power of an account")
@openapi.parameter("address", str, location="query", required=True)
@measure
async def user_score(request):
    return await user_score_handler(app, request)

async def user_score_handler(app, request):

    address = request.args.get("address", "")
    if not is_address(address):
        return bad_request("Invalid Ethereum address")

    try:
        vp = await app.ctx.strategy_client.get_vp(address)
    except Exception as e:
        logr.error(format_http_error(e, f"Error getting voting power for {address}"))
        return json({'error': 'Voting power lookup failed'}, status=502)

    return json({'score': vp['total'],
                 'delegatedScore': vp['delegated'],
                 'timestamp': now_ts()})

#################################################################################################################################################

@app.route('/v1/user_delegate')
@openapi.tag("User Metrics")
@openapi.summary("Current delegate of an account, or null")
@openapi.parameter("address", str, location="query", required=True)
@measure
async def user_delegate(request):
    return await user_delegate_handler(app, request)

async def user_delegate_handler(app, request):

    address = request.args.get("address", "")
    if not is_address(address):
        return bad_request("Invalid Ethereum address")

    try:
        delegate = await latest_delegate(app.ctx.delegation_client, app.ctx.snapshot_space, address)
    except Exception as e:
        logr.error(format_http_error(e, f"Error getting delegate for {address}"))
        return json({'error': 'Delegate lookup failed'}, status=502)

    return json({'delegate': delegate, 'timestamp': now_ts()})

#################################################################################################################################################

@app.route('/v1/config')
@openapi.tag("Checks")
@openapi.summary("Token, locker factory & snapshot space this server reports on")
async def config_endpoint(request):
    return await config_handler(app, request)

async def config_handler(app, request):
    return json(app.ctx.public_config)

##################################
#
# Tactical DevOps Testing Endpoint
#
##################################

def pip_versions(dists):
    versions = {}
    for dist in dists:
        try:
            versions[dist] = importlib_version(dist)
        except PackageNotFoundError:
            versions[dist] = None
    return versions

@app.get("/health")
@openapi.tag("Checks")
@openapi.summary("Server health check")
async def health_check(request):
    return await health_handler(app, request)

async def health_handler(app, request):

    try:
        files = sorted(os.listdir(app.ctx.config['data_dir']))
    except OSError as e:
        return json({"status": "error", "message": str(e)}, status=500)

    try:
        ip_address = socket.gethostbyname(socket.gethostname())
    except OSError:
        ip_address = "unknown"

    metrics = {name: {'lastUpdatedAt': manager.get_current()[1],
                      'isRefreshing': manager.is_refreshing}
               for name, manager in app.ctx.managers.items()}

    return json({
        "status": "ok",
        "files": files,
        "ip_address": ip_address,
        "metrics": metrics,
        "config": app.ctx.public_config,
        "version": __version__,
        "gitsha": GIT_COMMIT_SHA,
        "boot_time": BOOT_TIME,
        "env": {'PipDistributions': pip_versions(['sanic', 'sanic-ext', 'web3', 'httpx'])},
    })

#################################################################################
#
# BOOT SEQUENCE
#
################################################################################

@app.before_server_start(priority=0)
async def bootstrap_metrics(app, loop):
    app.ctx.build(config)
    logr.info(f"Registered metrics: {list(app.ctx.managers)}")

@app.after_server_start
async def start_refreshing(app):
    for name, manager in app.ctx.managers.items():
        logr.info(f"Starting {name}")
        app.add_task(manager.start())

@app.before_server_stop
async def stop_refreshing(app):
    await app.ctx.close()

app.ext.openapi.describe(
    f"{config['friendly_short_name']} Metrics",
    version=__version__,
    description=dedent(
        f"""
# About

Token and governance metrics for {config['friendly_short_name']}: DAO members, their own and delegated
voting power, the total amount distributed, and how the total supply is distributed.

## Cached, not live

Aggregate metrics are computed in the background and served from the last successful
refresh.  Every response carries `lastUpdatedAt`, the unix time of that refresh.  A failed
refresh never replaces good data.  Only `/v1/user_score` and `/v1/user_delegate` query
upstream sources on request.

## Fast by Measuring

All responses [include](https://developer.mozilla.org/en-US/docs/Web/HTTP/Headers/Server-Timing) a `server-timing` header,
denominated in milliseconds.

# Config
```
{yaml.dump(public_config(config), sort_keys=True).strip()}
```
"""
    ),
)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=config['port'], dev=True, debug=True)
