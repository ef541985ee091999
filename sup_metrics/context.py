from pathlib import Path

from .cache import FileStorage, MetricsCacheManager
from .clients_chain import ChainReadClient
from .clients_graph import GraphQLClient
from .clients_scores import ScoreApiClient, StrategyClient
from .config import public_config
from .data_products import UnifiedScores, DistributionMetrics
from .logsetup import get_logger
from .space_config import SpaceConfigCache

logr = get_logger('context')

class MetricsContext:
    """
    Everything one process serves from: the upstream clients, and one cache
    manager per aggregator, registered under the aggregator's name
    (eg. ctx.unified_scores, ctx.distribution_metrics).
    """

    def __init__(self):
        self.managers = {}
        self.clients = []
        self.config = None
        self.public_config = {}

    def graph_client(self, url):
        client = GraphQLClient(url, timeout=self.config['graph_timeout'], max_tries=self.config['graph_max_tries'])
        self.clients.append(client)
        return client

    def chain_client(self, url, chain_name):
        client = ChainReadClient(url, chain_name=chain_name,
                                 timeout=self.config['rpc_timeout'],
                                 max_tries=self.config['rpc_max_tries'],
                                 concurrency=self.config['rpc_concurrency'])
        self.clients.append(client)
        return client

    def build(self, config, storage=None):

        self.config = config
        self.public_config = public_config(config)
        self.snapshot_space = config['snapshot_space']

        #################################################################################
        # Clients

        graph = self.graph_client(config['subgraph_url'])
        locker_graph = self.graph_client(config['locker_subgraph_url'] or config['subgraph_url'])
        vesting_graph = self.graph_client(config['vesting_subgraph_url'])
        hub = self.graph_client(config['snapshot_hub_url'])
        self.delegation_client = self.graph_client(config['delegation_subgraph_url'])

        score_api = ScoreApiClient(config['snapshot_score_url'],
                                   timeout=config['score_timeout'],
                                   max_tries=config['score_max_tries'])
        self.clients.append(score_api)

        space_config = SpaceConfigCache(hub, config['snapshot_space'])

        self.strategy_client = StrategyClient(score_api, space_config, config['snapshot_space'],
                                              config['vp_calc_chunk_size'],
                                              capture_dir=Path(config['data_dir']) / 'captures')

        chain = self.chain_client(config['rpc_url'], 'base')
        l1_chain = self.chain_client(config['l1_rpc_url'], 'ethereum')

        for client in [graph, self.delegation_client, hub, chain, l1_chain]:
            if not client.is_valid():
                logr.warning(f"{type(client).__name__} has no endpoint configured, refreshes depending on it will fail.")

        #################################################################################
        # Aggregators & their cache managers

        storage = storage or FileStorage(config['data_dir'])

        unified_scores = UnifiedScores(config, graph, self.delegation_client, vesting_graph, chain, self.strategy_client)
        self.register(unified_scores, storage, config['scores_update_interval'])

        distribution_metrics = DistributionMetrics(config, chain, l1_chain, locker_graph, vesting_graph)
        self.register(distribution_metrics, storage, config['distribution_update_interval'])

        return self

    def register(self, aggregator, storage, interval):
        manager = MetricsCacheManager(aggregator.name, aggregator.compute, aggregator.default(),
                                      storage, interval=interval)
        self.managers[aggregator.name] = manager
        setattr(self, aggregator.name, manager)

    async def close(self):

        for manager in self.managers.values():
            await manager.stop()

        for client in self.clients:
            await client.aclose()
