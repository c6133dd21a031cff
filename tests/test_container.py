from storefront.container import ServiceContainer
from storefront.shared.utils import Settings
from storefront.sweeper import PendingOrderSweeper
from tests.fakes import WEBHOOK_SECRET, run


def build(world, **overrides):
    config = Settings(_env_file=None, PAYMENT_WEBHOOK_SECRET=WEBHOOK_SECRET, **overrides)
    return ServiceContainer(
        config,
        products=world.products,
        addresses=world.addresses,
        carts=world.carts,
        orders=world.orders,
        payments=world.payments,
        gateway=world.gateway,
    )


def test_sweeper_disabled_by_default(world):
    assert build(world).sweeper is None


def test_sweeper_built_when_ttl_set(world):
    container = build(world, PENDING_ORDER_TTL_MINUTES=30, PENDING_ORDER_SWEEP_INTERVAL_SECONDS=5)
    assert isinstance(container.sweeper, PendingOrderSweeper)
    assert container.sweeper.interval == 5
    assert container.sweeper.payment_service is container.payment_service


def test_close_releases_gateway(world):
    container = build(world, PENDING_ORDER_TTL_MINUTES=30)

    async def lifecycle():
        container.start()
        await container.close()

    run(lifecycle())
    assert world.gateway.closed
    assert container.sweeper._task is None


def test_payment_settings_flow_into_service(world):
    container = build(world, CURRENCY="USD", PAYMENT_PUBLISHABLE_KEY="pk_live")
    config = container.payment_service.config()
    assert config.currency == "usd"
    assert config.publishable_key == "pk_live"
