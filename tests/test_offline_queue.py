import asyncio

from zenux_client.offline import OfflineQueue


def test_queue_persists_in_order_across_instances(tmp_path):
    path = str(tmp_path / "queue" / "offline.json")

    async def run():
        queue = OfflineQueue(path)
        first = await queue.add({"content": "one"})
        await queue.add({"content": "two"})
        return first, await OfflineQueue(path).items()

    first, items = asyncio.run(run())

    assert [i.data["content"] for i in items] == ["one", "two"]
    assert items[0].id == first.id
    assert items[0].type == "message"
    assert items[0].retry_count == 0


def test_remove_increment_and_clear(tmp_path):
    queue = OfflineQueue(str(tmp_path / "offline.json"))

    async def run():
        a = await queue.add({"content": "a"})
        b = await queue.add({"content": "b"})
        await queue.increment_retry(b.id)
        await queue.increment_retry(b.id)
        await queue.remove(a.id)
        remaining = await queue.items()
        await queue.clear()
        return remaining, await queue.items()

    remaining, cleared = asyncio.run(run())

    assert [(i.data["content"], i.retry_count) for i in remaining] == [("b", 2)]
    assert cleared == []


def test_missing_or_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "offline.json"
    queue = OfflineQueue(str(path))
    assert asyncio.run(queue.items()) == []

    path.write_text("{not json")
    assert asyncio.run(queue.items()) == []


def test_update_replaces_payload_in_place(tmp_path):
    queue = OfflineQueue(str(tmp_path / "offline.json"))

    async def run():
        a = await queue.add({"user_content": "hi", "assistant_content": "yo"}, type="turn")
        await queue.add({"content": "later"})
        await queue.update(a.id, {"user_content": None, "assistant_content": "yo"})
        return await queue.items()

    items = asyncio.run(run())

    assert [(i.type, i.data) for i in items] == [
        ("turn", {"user_content": None, "assistant_content": "yo"}),
        ("message", {"content": "later"}),
    ]
