from app.domain.auth.schemas import Actor


def db_with_scalars_first(mocker, value):
    res = mocker.Mock()
    res.scalars.return_value.first.return_value = value
    db = mocker.Mock()
    db.execute = mocker.AsyncMock(return_value=res)
    return db, res


def db_with_rows(mocker, *rows):
    """Each db.execute(...) returns a result whose .first() is the next row."""
    results = []
    for row in rows:
        res = mocker.Mock()
        res.first.return_value = row
        results.append(res)
    db = mocker.Mock()
    db.execute = mocker.AsyncMock(side_effect=results)
    db.flush = mocker.AsyncMock()
    return db


def db_with_scalar(mocker, value):
    db = mocker.Mock()
    db.scalar = mocker.AsyncMock(return_value=value)
    db.flush = mocker.AsyncMock()
    return db


def make_actor(actor_id: int = 7, *roles: str) -> Actor:
    return Actor(id=actor_id, email=f"user{actor_id}@example.com", name=f"User {actor_id}", roles=frozenset(roles))
