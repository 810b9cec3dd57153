"""Leadership oracle consumed by the entity authority gate."""

__all__ = ["LeadershipOracle", "StaticLeadership"]


class LeadershipOracle:
    """Answers whether this node currently leads the cluster majority."""

    def is_majority_leader(self) -> bool:
        raise NotImplementedError


class StaticLeadership(LeadershipOracle):
    """Fixed verdict, used when the node runs standalone."""

    def __init__(self, leader: bool = True):
        self.leader = leader

    def is_majority_leader(self) -> bool:
        return self.leader
