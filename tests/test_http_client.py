from makeup_preview.services.utils.http_client import SharedSession


async def test_session_is_shared_and_closed():
    shared = SharedSession()
    async with shared.lifespan():
        first = await shared.session()
        assert await shared.session() is first
        assert not first.closed
    assert first.closed

    reopened = await shared.session()
    assert reopened is not first
    await shared.close()
