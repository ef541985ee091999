import httpx
import backoff

from . import dev_modes
from .logsetup import get_logger
from .signatures import PAGE_SIZE, delegate_for_query

logr = get_logger('clients_graph')

RETRYABLE_STATUS = (429, 500, 502, 503, 504)

class GraphQLRequestError(Exception):

    def __init__(self, errors):
        super().__init__(f"GraphQL errors: {errors}")
        self.errors = errors

def is_permanent(e):
    """Give up immediately on HTTP errors that a retry won't fix."""
    return isinstance(e, httpx.HTTPStatusError) and e.response.status_code not in RETRYABLE_STATUS

def format_http_error(error, context):
    if isinstance(error, httpx.HTTPStatusError):
        return f"{context}: [{error.response.status_code}] Response: {error.response.text}"
    return f"{context}: {error!r}"

class GraphQLClient:
    """
    POSTs GraphQL documents to one endpoint.

    Transport errors and 429/5xx responses are retried with exponential backoff,
    at most `max_tries` attempts in total.  Each attempt is bounded by `timeout`.
    """

    def __init__(self, url, timeout=30, max_tries=3, transport=None):
        self.url = url
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport,
                                        headers={"Content-Type": "application/json"})
        self._post = backoff.on_exception(
            backoff.expo,
            (httpx.HTTPStatusError, httpx.RequestError),
            max_tries=max_tries,
            giveup=is_permanent,
            jitter=backoff.full_jitter,
            logger=logr,
        )(self._post_once)

    def is_valid(self):
        return self.url not in ('', 'ignored', None)

    async def _post_once(self, payload):
        response = await self.client.post(self.url, json=payload)
        response.raise_for_status()
        return response.json()

    async def post(self, query, variables=None):
        """Full response body, including any 'errors'."""
        payload = {"query": query}
        if variables:
            payload["variables"] = variables
        return await self._post(payload)

    async def query(self, query, variables=None):
        """The 'data' of the response.  Raises GraphQLRequestError if the server reported errors."""
        body = await self.post(query, variables)
        if body.get('errors'):
            raise GraphQLRequestError(body['errors'])
        return body['data']

    async def aclose(self):
        await self.client.aclose()


async def query_all_pages(client, query_fn, to_items, item_fn=None, page_size=PAGE_SIZE):
    """
    Crawl a collection by id cursor.

    query_fn(last_id) builds the page query, to_items(body) extracts the raw page
    and item_fn(item) projects each item.  Stops on a short page.  If the server
    reports errors the items collected so far are returned.
    """

    last_id = ""
    items = []
    pages = 0

    while True:
        body = await client.post(query_fn(last_id))

        if body.get('errors'):
            logr.error(f"GraphQL errors after {pages} page(s), keeping {len(items)} items: {body['errors']}")
            break

        new_items = to_items(body)
        pages += 1

        if item_fn is None:
            items.extend(new_items)
        else:
            items.extend(item_fn(item) for item in new_items)

        if len(new_items) < page_size:
            break

        last_id = new_items[-1]['id']

        if dev_modes.STOP_EARLY:
            logr.info(f"STOP_EARLY set, stopping after {pages} page(s)")
            break

    logr.debug(f"Fetched {len(items)} items in {pages} page(s)")

    return items


async def latest_delegate(client, space, delegator):
    """Current delegate of one delegator in a space, or None."""

    data = await client.query(delegate_for_query(space, delegator))

    delegations = data['delegations']

    return delegations[0]['delegate'].lower() if delegations else None
