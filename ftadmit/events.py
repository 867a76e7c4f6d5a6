"""Request arrival and departure events."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Union

from ftadmit.model.request import Request
from ftadmit.types.base import EventType

__all__ = ["RequestEvent", "events_for", "generate_requests"]

Number = Union[int, float]


@dataclass(frozen=True, order=True)
class RequestEvent:
    """One point on the simulation timeline.

    Events order by time, then type (arrivals first), then request id.
    """

    time: float
    type: EventType
    request_id: int


def events_for(requests: Iterable[Request]) -> List[RequestEvent]:
    """Arrival and departure events of ``requests`` in processing order.

    Requests with an infinite departure time produce only an arrival.
    """
    events = []
    for request in requests:
        events.append(RequestEvent(request.arrival_time, EventType.ARRIVAL, request.id))
        if not math.isinf(request.departure_time):
            events.append(
                RequestEvent(request.departure_time, EventType.DEPARTURE, request.id)
            )
    return sorted(events)


def _draw(rng: random.Random, bounds: Sequence[Number]) -> Number:
    low, high = bounds
    if isinstance(low, int) and isinstance(high, int):
        return rng.randint(low, high)
    return rng.uniform(low, high)


def generate_requests(
    count: int,
    vms: Sequence[int],
    bandwidth: Sequence[Number],
    arrival_rate: float,
    departure_rate: float,
    rng: random.Random,
    first_id: int = 0,
) -> List[Request]:
    """Draw a Poisson workload.

    Inter-arrival times and lifetimes are exponential with the given rates.

    Args:
        count: Number of requests.
        vms: Inclusive ``[min, max]`` VM count per request.
        bandwidth: Inclusive ``[min, max]`` per-VM bandwidth; integer bounds
            draw integers.
        arrival_rate: Mean arrivals per time unit.
        departure_rate: Inverse of the mean lifetime.
        rng: Random source.
        first_id: Id of the first request.

    Returns:
        Requests ordered by arrival time.
    """
    if arrival_rate <= 0 or departure_rate <= 0:
        raise ValueError("arrival_rate and departure_rate must be positive")
    if vms[0] < 1 or vms[0] > vms[1] or bandwidth[0] > bandwidth[1]:
        raise ValueError("ranges must be [min, max] with min <= max and VMs >= 1")

    requests = []
    now = 0.0
    for offset in range(count):
        now += rng.expovariate(arrival_rate)
        lifetime = rng.expovariate(departure_rate)
        requests.append(
            Request(
                id=first_id + offset,
                n_vms=int(_draw(rng, vms)),
                bandwidth=float(_draw(rng, bandwidth)),
                arrival_time=now,
                departure_time=now + lifetime,
            )
        )
    return requests
