"""
Delivery — outbound HTTP calls to the product sync endpoint.

DeliveryClient performs and classifies single attempts; retries belong to the
queue worker. delivery.modes holds the non-durable alternatives.
"""
