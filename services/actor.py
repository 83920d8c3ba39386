"""
Actor
======
The principal a workflow runs on behalf of. Background jobs carry the
requesting user's actor or ``SYSTEM_ACTOR``; it ends up on the Deployment.
"""


class Actor:
    """Identity threaded through every orchestrator call."""

    def __init__(self, user_id=None, name='system', is_system=False):
        self.user_id = user_id
        self.name = name
        self.is_system = is_system

    @classmethod
    def for_user(cls, user):
        return cls(user_id=user.id, name=user.username)

    def __eq__(self, other):
        if not isinstance(other, Actor):
            return NotImplemented
        return (self.user_id, self.name, self.is_system) == (other.user_id, other.name, other.is_system)

    def __hash__(self):
        return hash((self.user_id, self.name, self.is_system))

    def __repr__(self):
        return f'<Actor {self.name}>'


SYSTEM_ACTOR = Actor(name='system', is_system=True)
