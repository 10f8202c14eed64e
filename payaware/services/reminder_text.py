from payaware.models.domain.subscription_domain import Subscription

DEFAULT_CURRENCY = "₽"


def format_cost(cost: float) -> str:
    # 10.0 -> "10", 9.5 -> "9.50"
    if float(cost).is_integer():
        return str(int(cost))
    return f"{cost:.2f}"


def render_queued_message(subscription: Subscription) -> str:
    """Short text stored on the topic at scan time."""
    return f"Don't forget to pay for your {subscription.service_name} subscription!"


def render_push_body(subscription: Subscription, currency: str = DEFAULT_CURRENCY) -> str:
    """Push body built from the live subscription at send time."""
    lines = [
        "Don't forget to pay:",
        f"• Service: «{subscription.service_name.upper()}»",
        f"• 💳 Cost: {format_cost(subscription.cost)} {currency}",
    ]
    if subscription.tag:
        lines.append(f"• #{subscription.tag}")
    return "\n".join(lines)
