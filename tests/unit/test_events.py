from caisse import events


def test_emit_reaches_subscribers_of_each_topic():
    bus = events.InvalidationBus()
    calls = []
    bus.subscribe(events.STOCK, lambda topic, dept, payload: calls.append((topic, dept, payload)))
    bus.subscribe(events.SALES, lambda topic, dept, payload: calls.append((topic, dept, payload)))

    delivered = bus.emit(events.AFTER_SALE, "dept-1", sale_id="s-1")

    assert delivered == 2
    assert calls == [(events.STOCK, "dept-1", {"sale_id": "s-1"}), (events.SALES, "dept-1", {"sale_id": "s-1"})]


def test_failing_listener_does_not_block_others():
    bus = events.InvalidationBus()
    calls = []

    def broken(topic, dept, payload):
        raise RuntimeError("boom")

    bus.subscribe(events.DASHBOARD, broken)
    bus.subscribe(events.DASHBOARD, lambda topic, dept, payload: calls.append(topic))
    assert bus.emit((t for t in [events.DASHBOARD]), "dept-1") == 1
    assert calls == [events.DASHBOARD]


def test_unsubscribe():
    bus = events.InvalidationBus()
    calls = []
    unsubscribe = bus.subscribe(events.CATALOGUE, lambda *a: calls.append(a))
    unsubscribe()
    unsubscribe()
    assert bus.emit([events.CATALOGUE], "dept-1") == 0
    assert calls == []
