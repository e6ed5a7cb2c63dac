import structlog

from vpe.exceptions import NotFoundError
from vpe.services.one_client import OneClient, parse_document, text_at

LOGGER = structlog.get_logger("vpe.host")


def host_to_dict(node) -> dict:
    return {
        'id': int(text_at(node, 'ID')),
        'name': text_at(node, 'NAME'),
        'state': text_at(node, 'STATE', default=''),
        'cluster': text_at(node, 'CLUSTER', default=''),
    }


class HostService:
    """Read-only view of the orchestrator's hosts; enabling one is admin work."""

    def __init__(self, one_client: OneClient):
        self.one = one_client

    def _nodes(self, ctx):
        doc = parse_document(self.one.call_checked('one.hostpool.info', ctx.session))
        return doc.xpath('/HOST_POOL/HOST')

    def pool(self, ctx) -> list[dict]:
        return [host_to_dict(node) for node in self._nodes(ctx)]

    def ask_id(self, ctx, name: str) -> int:
        for node in self._nodes(ctx):
            if text_at(node, 'NAME') == name:
                return int(text_at(node, 'ID'))
        raise NotFoundError(f"Host[{name}] is not found.", "HOST_NOT_FOUND")

    def info(self, ctx, host_id) -> dict:
        return host_to_dict(self.one.info('one.host.info', ctx.session, host_id))

    def enable(self, ctx, host_id, enabled: bool) -> int:
        self.one.call_checked('one.host.enable', ctx.session, host_id, bool(enabled))
        LOGGER.info("host enabled" if enabled else "host disabled", id=host_id, user=ctx.name)
        return int(host_id)
