from imagetools.core.session import CHANNEL_PREFIX, Session, channel_for, is_session_id, new_session_id


def test_new_session_ids_are_unique():
    ids = {new_session_id() for _ in range(200)}
    assert len(ids) == 200
    assert all(is_session_id(i) for i in ids)


def test_channel_name_format():
    assert channel_for("abc") == "sse:channel:abc"
    assert channel_for("abc") == channel_for("abc")
    assert channel_for("abc") != channel_for("abd")
    assert CHANNEL_PREFIX == "sse:channel"


def test_is_session_id_rejects_other_forms():
    sid = new_session_id()
    assert is_session_id(sid)
    assert not is_session_id(sid.upper())
    assert not is_session_id(sid.replace("-", ""))
    assert not is_session_id("")
    assert not is_session_id("../etc")
    assert not is_session_id(None)


def test_session_roles_share_channel():
    sub = Session.subscriber()
    pub = Session.publisher(sub.id)
    assert sub.role == "subscriber" and pub.role == "publisher"
    assert sub.channel == pub.channel == channel_for(sub.id)
    payload = sub.to_payload()
    assert payload["id"] == sub.id
    assert payload["channel"] == sub.channel
