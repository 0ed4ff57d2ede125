from dataclasses import dataclass


@dataclass
class QueueStats:
    name: str
    total: int
    ready: int
    delayed: int
    reserved: int

    @staticmethod
    def from_row(row: tuple) -> "QueueStats":
        name, total, ready, delayed, reserved = row
        return QueueStats(
            name=name,
            total=total or 0,
            ready=ready or 0,
            delayed=delayed or 0,
            reserved=reserved or 0,
        )
