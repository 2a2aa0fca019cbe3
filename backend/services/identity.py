"""Map session roster entries to durable group identities.

Resolution order: an explicit stored link that points into the group, then
(for the name-matching strategy) a case-insensitive, whitespace-trimmed exact
name match against the group's identities. A successful fallback is
persisted as a link, so resolving the same entry again is a plain lookup.
"""
import logging

from backend.services.stores import StoreError

logger = logging.getLogger(__name__)


def normalize_name(name):
    return str(name or '').strip().lower()


class IdentityResolver:
    """Explicit links only. Subclasses add fallback strategies."""

    def __init__(self, mappings):
        self.mappings = mappings

    def resolve(self, group_id, roster_ref):
        """GroupPlayer id for one session player id, or None."""
        return self.resolve_roster(group_id, [roster_ref])[0]

    def resolve_roster(self, group_id, roster_refs):
        roster_refs = list(roster_refs)
        session_players = self.mappings.session_players(roster_refs)
        identities = {gp.id: gp for gp in self.mappings.group_identities(group_id)}
        return [
            self._resolve_entry(group_id, session_players.get(ref), identities)
            for ref in roster_refs
        ]

    def _resolve_entry(self, group_id, session_player, identities):
        if session_player is None:
            return None
        linked_id = session_player.group_player_id
        if linked_id is not None:
            if linked_id in identities:
                return linked_id
            logger.info('Session player %s links to %s outside group %s',
                        session_player.id, linked_id, group_id)
            return None
        return self._fallback(group_id, session_player, identities)

    def _fallback(self, group_id, session_player, identities):
        return None


class LinkedIdentityResolver(IdentityResolver):
    """Resolves only entries that carry an explicit link into the group.

    Unlinked entries stay unresolved and are skipped by the engine.
    """


class NameMatchIdentityResolver(IdentityResolver):
    """Falls back to an exact, case-insensitive name match and remembers it."""

    def _fallback(self, group_id, session_player, identities):
        wanted = normalize_name(session_player.name)
        if not wanted:
            return None
        matches = [gp.id for gp in identities.values() if normalize_name(gp.name) == wanted]
        if len(matches) != 1:
            if matches:
                logger.info('Name "%s" is ambiguous in group %s (%d identities)',
                            session_player.name, group_id, len(matches))
            return None

        group_player_id = matches[0]
        logger.info('Auto-linking session player "%s" (%s) to group player %s',
                    session_player.name, session_player.id, group_player_id)
        try:
            self.mappings.link(session_player.id, group_player_id)
        except StoreError:
            logger.exception('Could not persist link for session player %s', session_player.id)
        return group_player_id


_RESOLVERS = {
    'linked': LinkedIdentityResolver,
    'name_match': NameMatchIdentityResolver,
}


def build_resolver(strategy, mappings):
    try:
        resolver_cls = _RESOLVERS[str(strategy or 'name_match').strip().lower()]
    except KeyError:
        raise ValueError(f'Unknown identity resolution strategy: {strategy!r}') from None
    return resolver_cls(mappings)
