import pytest
from unittest.mock import AsyncMock, Mock

from sup_metrics.server import (dao_members_count_handler, total_delegated_score_handler, dao_members_handler,
                                total_score_handler, distribution_metrics_handler, user_score_handler,
                                user_delegate_handler, config_handler, health_handler)
from sup_metrics.middleware import measure, start_timer, add_server_timing_header, add_cors_headers

from conftest import A, B, D

CHECKSUMMED = '0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed'

def manager_serving(data, last_updated_at):
    manager = Mock()
    manager.get_current.return_value = (data, last_updated_at)
    manager.is_refreshing = False
    return manager

@pytest.fixture
def app(sanic_app, unified_data, tmp_path):

    app = sanic_app

    distribution = {'reserveBalances': 1, 'stakedSup': 2, 'lpSup': 3, 'streamingOut': 4, 'communityCharge': 5,
                    'investorsTeamLocked': 6, 'daoTreasury': 7, 'foundationTreasury': 8, 'other': 64, 'totalSupply': 100}

    app.ctx.unified_scores = manager_serving(unified_data, 1700000000)
    app.ctx.distribution_metrics = manager_serving(distribution, 1700000100)
    app.ctx.managers = {'unified_scores': app.ctx.unified_scores,
                        'distribution_metrics': app.ctx.distribution_metrics}
    app.ctx.config = {'data_dir': str(tmp_path)}
    app.ctx.public_config = {'tokenAddress': '0xa69f80524381275A7fFdb3AE01c54150644c8792',
                             'lockerFactoryAddress': '0x1', 'snapshotSpace': 'superfluid.eth',
                             'snapshotHubUrl': 'https://hub.snapshot.org/graphql'}
    app.ctx.snapshot_space = 'superfluid.eth'
    app.ctx.strategy_client = Mock()
    app.ctx.delegation_client = Mock()

    app.middleware('request')(start_timer)
    app.middleware('response')(add_server_timing_header)
    app.middleware('response')(add_cors_headers)

    routes = {
        '/v1/dao_members_count': dao_members_count_handler,
        '/v1/total_delegated_score': total_delegated_score_handler,
        '/v1/dao_members': dao_members_handler,
        '/v1/total_score': total_score_handler,
        '/v1/distribution_metrics': distribution_metrics_handler,
        '/v1/user_score': user_score_handler,
        '/v1/user_delegate': user_delegate_handler,
        '/v1/config': config_handler,
        '/health': health_handler,
    }

    for uri, handler in routes.items():

        def route(handler):
            @measure
            async def endpoint(request):
                return await handler(app, request)
            return endpoint

        app.add_route(route(handler), uri, name=uri.strip('/').replace('/', '_'))

    return app

@pytest.mark.asyncio
async def test_dao_members_count_endpoint(app):

    _, resp = await app.asgi_client.get('/v1/dao_members_count')

    assert resp.status == 200
    assert resp.json == {'daoMembersCount': 4, 'lastUpdatedAt': 1700000000}
    assert 'data;dur=' in resp.headers['Server-Timing']
    assert 'total;dur=' in resp.headers['Server-Timing']
    assert resp.headers['Access-Control-Allow-Origin'] == '*'

@pytest.mark.asyncio
async def test_total_delegated_score_endpoint(app):

    _, resp = await app.asgi_client.get('/v1/total_delegated_score')

    assert resp.status == 200
    assert resp.json['totalDelegatedScore'] == 500000
    assert resp.json['perDelegateScore'] == [{'address': D, 'score': 500000, 'delegatedScore': 500000, 'nrDelegations': 2}]
    assert resp.json['lastUpdatedAt'] == 1700000000

@pytest.mark.asyncio
async def test_dao_members_endpoint_with_filters(app):

    _, resp = await app.asgi_client.get('/v1/dao_members?min_vp=100000&include_all_delegates=true')

    assert resp.status == 200
    assert resp.json['totalMembersCount'] == 4
    assert [m['address'] for m in resp.json['daoMembers']] == [D, A, B]
    assert resp.json['daoMembers'][0]['isDelegate'] == {'delegatedVotingPower': 500000, 'nrDelegators': 2}
    assert resp.json['lastUpdatedAt'] == 1700000000

@pytest.mark.asyncio
async def test_dao_members_endpoint_min_vp_only(app):

    _, resp = await app.asgi_client.get('/v1/dao_members?min_vp=100000')

    assert [m['address'] for m in resp.json['daoMembers']] == [A, B]

@pytest.mark.asyncio
async def test_dao_members_endpoint_bad_min_vp(app):

    _, resp = await app.asgi_client.get('/v1/dao_members?min_vp=lots')

    assert resp.status == 400
    assert 'error' in resp.json

@pytest.mark.asyncio
async def test_total_score_endpoint(app):

    _, resp = await app.asgi_client.get('/v1/total_score')

    assert resp.json == {'totalScore': 1234567, 'poolCount': 3, 'additionalTotalScore': 1000, 'lastUpdatedAt': 1700000000}

@pytest.mark.asyncio
async def test_distribution_metrics_endpoint(app):

    _, resp = await app.asgi_client.get('/v1/distribution_metrics')

    assert resp.json['lastUpdatedAt'] == 1700000100
    assert resp.json['metrics']['other'] == 64
    assert resp.json['metrics']['totalSupply'] == 100

@pytest.mark.asyncio
async def test_user_score_endpoint(app):

    app.ctx.strategy_client.get_vp = AsyncMock(return_value={'address': CHECKSUMMED.lower(), 'total': 150.0, 'delegated': 40.0})

    _, resp = await app.asgi_client.get(f'/v1/user_score?address={CHECKSUMMED}')

    assert resp.status == 200
    assert resp.json['score'] == 150.0
    assert resp.json['delegatedScore'] == 40.0
    assert isinstance(resp.json['timestamp'], int)
    app.ctx.strategy_client.get_vp.assert_awaited_once_with(CHECKSUMMED)

@pytest.mark.asyncio
async def test_user_score_invalid_address(app):

    app.ctx.strategy_client.get_vp = AsyncMock()

    _, resp = await app.asgi_client.get('/v1/user_score?address=0x1234')

    assert resp.status == 400
    assert resp.json == {'error': 'Invalid Ethereum address'}
    app.ctx.strategy_client.get_vp.assert_not_called()

@pytest.mark.asyncio
async def test_user_score_upstream_failure(app):

    app.ctx.strategy_client.get_vp = AsyncMock(side_effect=RuntimeError("score api down"))

    _, resp = await app.asgi_client.get(f'/v1/user_score?address={CHECKSUMMED}')

    assert resp.status == 502
    assert 'error' in resp.json

@pytest.mark.asyncio
async def test_user_delegate_endpoint(app):

    app.ctx.delegation_client.query = AsyncMock(return_value={'delegations': [{'delegate': D}]})

    _, resp = await app.asgi_client.get(f'/v1/user_delegate?address={CHECKSUMMED}')

    assert resp.status == 200
    assert resp.json['delegate'] == D

    query = app.ctx.delegation_client.query.await_args.args[0]
    assert 'space: "superfluid.eth"' in query
    assert CHECKSUMMED.lower() in query

@pytest.mark.asyncio
async def test_user_delegate_none(app):

    app.ctx.delegation_client.query = AsyncMock(return_value={'delegations': []})

    _, resp = await app.asgi_client.get(f'/v1/user_delegate?address={CHECKSUMMED}')

    assert resp.status == 200
    assert resp.json['delegate'] is None

@pytest.mark.asyncio
async def test_user_delegate_invalid_address(app):

    _, resp = await app.asgi_client.get('/v1/user_delegate?address=not-an-address')

    assert resp.status == 400

@pytest.mark.asyncio
async def test_config_endpoint(app):

    _, resp = await app.asgi_client.get('/v1/config')

    assert resp.json == app.ctx.public_config

@pytest.mark.asyncio
async def test_health_endpoint(app):

    _, resp = await app.asgi_client.get('/health')

    assert resp.status == 200
    assert resp.json['status'] == 'ok'
    assert resp.json['metrics']['unified_scores'] == {'lastUpdatedAt': 1700000000, 'isRefreshing': False}
    assert resp.json['metrics']['distribution_metrics']['lastUpdatedAt'] == 1700000100
