"""
Orders app.

Holds the Order aggregate: the amount a buyer owes, its price breakdown and
its two status fields (fulfilment ``status`` and ``payment_status``).
Checkout forms and order history screens live outside this service.

Usage:
    from orders.models import Order, OrderPaymentStatus, OrderStatus

    order = Order.objects.get(pk=order_id, tenant_id=tenant_id)
    order.mark_paid()
    order.save()
"""
