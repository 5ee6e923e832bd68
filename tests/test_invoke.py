import asyncio
import gc

import pytest

from injecting import Container, NameNotFoundError, ServiceKind


@pytest.mark.asyncio
async def test_locals_override_registration():
    c = Container()
    c.register_constant("name", "jack")

    got = await c.invoke(lambda name: name, locals={"name": "jill"})
    assert got == "jill"


@pytest.mark.asyncio
async def test_none_local_falls_through_to_registry():
    c = Container()
    c.register_constant("name", "jack")

    got = await c.invoke(lambda name: name, locals={"name": None})
    assert got == "jack"


@pytest.mark.asyncio
async def test_falsy_local_is_used():
    c = Container()
    c.register_constant("retries", 3)

    got = await c.invoke(lambda retries: retries, locals={"retries": 0})
    assert got == 0


@pytest.mark.asyncio
async def test_locals_reach_nested_constructions():
    c = Container()
    c.register_service("greeting", lambda name: f"hello {name}")

    got = await c.invoke(lambda greeting: greeting, locals={"name": "ann"})
    assert got == "hello ann"


@pytest.mark.asyncio
async def test_awaitable_local_is_adopted():
    c = Container()

    async def later():
        await asyncio.sleep(0)
        return "late"

    got = await c.invoke(lambda name: name, locals={"name": later()})
    assert got == "late"


@pytest.mark.asyncio
async def test_unregistered_parameter_uses_default():
    c = Container()

    def server(host="localhost", port=8080):
        return host, port

    c.register_constant("port", 9090)

    got = await c.invoke(server)
    assert got == ("localhost", 9090)


@pytest.mark.asyncio
async def test_missing_dependency_rejects_future():
    c = Container()

    fut = c.invoke(lambda missing: missing)
    assert isinstance(fut, asyncio.Future)

    with pytest.raises(NameNotFoundError, match="missing") as ctx:
        await fut
    assert ctx.value.name == "missing"


@pytest.mark.asyncio
async def test_get_unknown_name_rejects_future():
    c = Container()

    fut = c.get("unknown")
    assert isinstance(fut, asyncio.Future)

    with pytest.raises(LookupError):
        await fut


@pytest.mark.asyncio
async def test_context_is_passed_as_leading_argument():
    c = Container()
    c.register_constant("name", "jack")

    class Greeter: ...

    greeter = Greeter()

    def greet(self, name):
        return self, name

    got = await c.invoke(greet, greeter)
    assert got == (greeter, "jack")


@pytest.mark.asyncio
async def test_context_without_receiver_parameter_rejects_future():
    c = Container()

    with pytest.raises(TypeError):
        await c.invoke(lambda *, name: name, object())


@pytest.mark.asyncio
async def test_keyword_only_dependencies():
    c = Container()
    c.register_constant("a", 1)
    c.register_constant("b", 2)

    def add(a, *, b):
        return a + b

    assert await c.invoke(add) == 3


@pytest.mark.asyncio
async def test_variadic_parameters_are_not_injected():
    c = Container()
    c.register_constant("a", 1)

    def collect(a, *args, **kwargs):
        return a, args, kwargs

    assert await c.invoke(collect) == (1, (), {})


@pytest.mark.asyncio
async def test_async_factory_is_awaited():
    c = Container()
    c.register_constant("url", "sqlite://")

    async def db(url):
        await asyncio.sleep(0)
        return {"url": url}

    c.register_service("db", db)

    assert await c.invoke(lambda db: db) == {"url": "sqlite://"}


@pytest.mark.asyncio
async def test_async_constructor_returning_none_yields_receiver():
    c = Container()
    c.register_constant("url", "sqlite://")

    async def connection(self, url):
        await asyncio.sleep(0)
        self.url = url

    c.register_service("connection", connection, kind=ServiceKind.CONSTRUCTOR)

    conn = await c.get("connection")
    assert conn.url == "sqlite://"


@pytest.mark.asyncio
async def test_constructor_may_return_replacement():
    c = Container()

    def service(self):
        self.unused = True
        return "replaced"

    c.register_service("service", service, kind=ServiceKind.CONSTRUCTOR)

    assert await c.get("service") == "replaced"


@pytest.mark.asyncio
async def test_factory_error_rejects_future():
    c = Container()

    def broken():
        msg = "bad config"
        raise ValueError(msg)

    c.register_service("broken", broken)

    with pytest.raises(ValueError, match="bad config"):
        await c.invoke(lambda broken: broken)


@pytest.mark.asyncio
async def test_sibling_dependencies_resolve_concurrently():
    c = Container()
    a_started = asyncio.Event()
    b_started = asyncio.Event()

    # Each waits for the other to start: sequential resolution would hang.
    async def a():
        a_started.set()
        await b_started.wait()
        return "a"

    async def b():
        b_started.set()
        await a_started.wait()
        return "b"

    c.register_service("a", a)
    c.register_service("b", b)

    got = await asyncio.wait_for(c.invoke(lambda a, b: a + b), timeout=1)
    assert got == "ab"


@pytest.mark.asyncio
async def test_constructor_falsy_non_none_result_is_kept():
    c = Container()

    def counter(self):
        self.unused = True
        return 0

    c.register_service("counter", counter, kind=ServiceKind.CONSTRUCTOR)

    assert await c.get("counter") == 0


@pytest.mark.asyncio
async def test_abandoned_dependency_errors_are_not_reported_as_unretrieved():
    c = Container()
    loop = asyncio.get_running_loop()
    reports = []
    loop.set_exception_handler(lambda _loop, context: reports.append(context))

    async def failing():
        msg = "late"
        raise ValueError(msg)

    try:
        with pytest.raises(NameNotFoundError):
            await c.invoke(lambda early, missing: None, locals={"early": failing()})

        for _ in range(3):
            await asyncio.sleep(0)
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert not [r for r in reports if "never retrieved" in r.get("message", "")]
