"""Remote state lister: read the backup chain of one volume from the store."""

import logging
from dataclasses import dataclass, field

from .. import __util__
from .artifact import ArtifactGrammar, BackupChain, is_temp_name

logger = logging.getLogger(__name__)


@dataclass
class RemoteState:
    """What the remote store holds for one volume.

    Attributes:
        chain: Committed artifacts, oldest first
        stale: Temporary objects left behind by interrupted transfers
        malformed: Names that look like ours but don't parse
    """

    chain: BackupChain
    stale: list[str] = field(default_factory=list)
    malformed: list[str] = field(default_factory=list)


def list_remote_state(store, grammar: ArtifactGrammar) -> RemoteState:
    """List and parse the remote objects of ``grammar.volume``.

    Malformed names are reported and skipped rather than aborting the
    volume, a stray file must not block every future backup.

    Raises:
        TransportError: If the store can't be listed
    """
    names = store.list_names(prefix=grammar.list_prefix)
    state = RemoteState(chain=BackupChain(grammar.volume))

    for name in names:
        if is_temp_name(name):
            if grammar.owns(name[:-1]):
                state.stale.append(name)
            continue
        if not grammar.owns(name):
            logger.debug("Ignoring %s, not an artifact of %s", name, grammar.volume)
            continue
        try:
            state.chain.artifacts.append(grammar.parse(name))
        except __util__.MalformedArtifactName as e:
            logger.warning("Skipping remote object: %s", e)
            state.malformed.append(name)

    for problem in state.chain.problems():
        logger.warning("Remote %s", problem)

    logger.debug(
        "Remote state of %s: %d artifact(s), %d stale, %d malformed",
        grammar.volume,
        len(state.chain),
        len(state.stale),
        len(state.malformed),
    )
    return state
