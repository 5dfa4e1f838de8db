from canvas_nav.session import UiSession


def test_subscribers_fire_only_on_change():
    session = UiSession()
    seen = []
    unsubscribe = session.subscribe(seen.append)

    session.set_keyboard_mode(False)
    session.set_keyboard_mode(True)
    session.set_keyboard_mode(True)
    assert session.toggle_keyboard_mode() is False
    assert seen == [True, False]

    unsubscribe()
    session.toggle_keyboard_mode()
    assert seen == [True, False]
    assert session.keyboard_mode is True


def test_round_trips_through_dict():
    session = UiSession.from_dict({"keyboard_mode": True})
    assert session.to_dict() == {"keyboard_mode": True}
    assert UiSession.from_dict(None).keyboard_mode is False
    assert UiSession.from_dict(["bad"]).keyboard_mode is False
