"""State machines for orders, swap requests and rental requests.

Each machine lists its legal edges and which party may take each edge.
Parties are resolved from the stored document:

- Order: ``customer`` (customerId) and ``seller`` (any item's sellerId)
- SwapRequest: ``requester`` (fromUserId) and ``counterparty`` (toUserId)
- RentalRequest: ``renter`` (renterId) and ``owner`` (ownerId)
"""
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Set, Tuple

from models import OrderStatus, SwapStatus, RentalStatus, NotificationType

CUSTOMER = 'customer'
SELLER = 'seller'
REQUESTER = 'requester'
COUNTERPARTY = 'counterparty'
RENTER = 'renter'
OWNER = 'owner'

Document = Dict[str, Any]


class Transition(NamedTuple):
    sources: FrozenSet[str]
    target: str
    roles: FrozenSet[str]


def edge(sources: Iterable[str], target: str, *roles: str) -> Transition:
    return Transition(frozenset(sources), target, frozenset(roles))


class StateMachine:
    """Legal transitions, role checks and notification wording for one entity kind."""

    def __init__(
        self,
        kind: str,
        collection: str,
        notification_type: NotificationType,
        id_key: str,
        statuses: Iterable[str],
        terminal: Iterable[str],
        transitions: List[Transition],
        roles_of: Callable[[Document, str], Set[str]],
        recipient_of: Callable[[Document, str], Optional[str]],
        messages: Dict[str, Tuple[str, str]]
    ):
        self.kind = kind
        self.collection = collection
        self.notification_type = notification_type
        self.id_key = id_key
        self.statuses = frozenset(statuses)
        self.terminal = frozenset(terminal)
        self.transitions = transitions
        self.roles_of = roles_of
        self.recipient_of = recipient_of
        self.messages = messages

        for transition in transitions:
            if transition.sources & self.terminal:
                raise ValueError(f"{kind}: transition out of a terminal status")

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal

    def successors(self, status: str) -> Set[str]:
        return {t.target for t in self.transitions if status in t.sources}

    def rule_for(self, current: str, target: str) -> Optional[Transition]:
        for transition in self.transitions:
            if current in transition.sources and transition.target == target:
                return transition
        return None

    def describe(self, doc: Document, status: str) -> Tuple[str, str]:
        """Title and body of the notification sent for moving ``doc`` to ``status``."""
        title, body = self.messages[status]
        fields = {
            'short_id': str(doc.get('id', ''))[-6:],
            'status_label': status.replace('_', ' '),
            'from_title': doc.get('fromListingTitle') or 'their item',
            'to_title': doc.get('toListingTitle') or 'your item',
        }
        return title.format(**fields), body.format(**fields)

    def notification_data(self, doc: Document, status: str) -> Dict[str, Any]:
        return {
            'type': self.notification_type.value,
            self.id_key: doc['id'],
            'status': status,
        }


def _order_roles(doc: Document, actor_id: str) -> Set[str]:
    roles = set()
    if doc.get('customerId') == actor_id:
        roles.add(CUSTOMER)
    if any(item.get('sellerId') == actor_id for item in doc.get('items') or []):
        roles.add(SELLER)
    return roles


def _order_recipient(doc: Document, actor_id: str) -> Optional[str]:
    customer = doc.get('customerId')
    if customer != actor_id:
        return customer
    sellers = [item.get('sellerId') for item in doc.get('items') or []]
    return next((s for s in sellers if s and s != actor_id), None)


def _two_party(first_field: str, first_role: str, second_field: str, second_role: str):
    def roles_of(doc: Document, actor_id: str) -> Set[str]:
        roles = set()
        if doc.get(first_field) == actor_id:
            roles.add(first_role)
        if doc.get(second_field) == actor_id:
            roles.add(second_role)
        return roles

    def recipient_of(doc: Document, actor_id: str) -> Optional[str]:
        if doc.get(first_field) == actor_id:
            return doc.get(second_field)
        return doc.get(first_field)

    return roles_of, recipient_of


_swap_roles, _swap_recipient = _two_party('fromUserId', REQUESTER, 'toUserId', COUNTERPARTY)
_rental_roles, _rental_recipient = _two_party('renterId', RENTER, 'ownerId', OWNER)

ORDER_MACHINE = StateMachine(
    kind='order',
    collection='orders',
    notification_type=NotificationType.ORDER,
    id_key='orderId',
    statuses=[s.value for s in OrderStatus],
    terminal=['delivered', 'completed', 'cancelled'],
    transitions=[
        edge(['pending'], 'in_transit', SELLER),
        edge(['pending', 'in_transit'], 'delivered', SELLER),
        edge(['in_transit'], 'completed', SELLER),
        edge(['pending', 'in_transit'], 'cancelled', SELLER),
    ],
    roles_of=_order_roles,
    recipient_of=_order_recipient,
    messages={
        'in_transit': ('Order Update', 'Your order #{short_id} is now in transit'),
        'delivered': ('Order Update', 'Your order #{short_id} has been delivered'),
        'completed': ('Order Update', 'Your order #{short_id} is now completed'),
        'cancelled': ('Order Cancelled', 'Your order #{short_id} was cancelled by the store'),
    }
)

SWAP_MACHINE = StateMachine(
    kind='swap request',
    collection='swapRequests',
    notification_type=NotificationType.SWAP,
    id_key='requestId',
    statuses=[s.value for s in SwapStatus],
    terminal=['rejected', 'cancelled', 'completed'],
    transitions=[
        edge(['pending'], 'accepted', COUNTERPARTY),
        edge(['pending'], 'rejected', COUNTERPARTY),
        edge(['pending', 'accepted'], 'cancelled', REQUESTER),
        edge(['accepted'], 'completed', REQUESTER, COUNTERPARTY),
    ],
    roles_of=_swap_roles,
    recipient_of=_swap_recipient,
    messages={
        'accepted': ('Swap Request Accepted', 'Your swap request for {to_title} was accepted'),
        'rejected': ('Swap Request Declined', 'Your swap request for {to_title} was declined'),
        'cancelled': ('Swap Request Cancelled', 'A swap request for {to_title} was cancelled'),
        'completed': ('Swap Completed', 'The swap of {from_title} for {to_title} is complete'),
    }
)

RENTAL_MACHINE = StateMachine(
    kind='rental request',
    collection='rentalRequests',
    notification_type=NotificationType.RENTAL,
    id_key='requestId',
    statuses=[s.value for s in RentalStatus],
    terminal=['rejected', 'cancelled', 'completed'],
    transitions=[
        edge(['pending'], 'approved', OWNER),
        edge(['pending'], 'rejected', OWNER),
        edge(['pending', 'approved'], 'cancelled', RENTER),
        edge(['approved'], 'active', OWNER),
        edge(['approved', 'active'], 'completed', OWNER),
    ],
    roles_of=_rental_roles,
    recipient_of=_rental_recipient,
    messages={
        'approved': ('Rental Request Approved', 'Your rental request #{short_id} was approved'),
        'rejected': ('Rental Request Declined', 'Your rental request #{short_id} was declined'),
        'cancelled': ('Rental Request Cancelled', 'Rental request #{short_id} was cancelled by the renter'),
        'active': ('Rental Started', 'Your rental #{short_id} is now active'),
        'completed': ('Rental Completed', 'Your rental #{short_id} is complete'),
    }
)

MACHINES = {m.collection: m for m in (ORDER_MACHINE, SWAP_MACHINE, RENTAL_MACHINE)}
