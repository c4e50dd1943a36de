"""Service lookups for route handlers.

Services are built once in the application lifespan and kept on
``app.state.services``.
"""
from dataclasses import dataclass

from fastapi import Request

from dashboard import DashboardAggregator
from database import DocumentStore
from lifecycle import LifecycleManager
from notifications import NotificationStore
from orders import OrderManager
from rentals import RentalManager
from swaps import SwapManager


@dataclass
class Services:
    store: DocumentStore
    notifications: NotificationStore
    lifecycle: LifecycleManager
    orders: OrderManager
    swaps: SwapManager
    rentals: RentalManager
    dashboard: DashboardAggregator

    @classmethod
    def build(cls, store: DocumentStore, push_sender=None) -> 'Services':
        notifications = NotificationStore(store, push_sender=push_sender)
        lifecycle = LifecycleManager(store, notifications)
        return cls(
            store=store,
            notifications=notifications,
            lifecycle=lifecycle,
            orders=OrderManager(store, notifications, lifecycle),
            swaps=SwapManager(store, notifications, lifecycle),
            rentals=RentalManager(store, notifications, lifecycle),
            dashboard=DashboardAggregator(store)
        )


def get_services(request: Request) -> Services:
    return request.app.state.services
