import pytest
from fastapi.testclient import TestClient

from subsidy_flow.api.deps import get_notifier
from subsidy_flow.core.statuses import Role
from subsidy_flow.database import get_db
from subsidy_flow.main import app
from subsidy_flow.models.entity import Entity
from subsidy_flow.models.profile import Profile, UserRole
from tests._factories import Actors, RecordingGateway, SqliteDatabase


@pytest.fixture()
def db(tmp_path) -> SqliteDatabase:
    database = SqliteDatabase(tmp_path / "subsidy_flow.db")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture()
def actors(db: SqliteDatabase) -> Actors:
    async def _seed(session) -> Actors:
        entity = Entity(name="Folk Music Association", nif="501111111")
        other = Entity(name="Sports Club", nif="502222222")
        silent = Entity(name="Chess Club", nif="503333333")
        session.add_all([entity, other, silent])
        await session.flush()

        roles_by_profile: list[tuple[Profile, list[str]]] = []

        def person(email, roles, *, entity_id=None, is_active=True) -> Profile:
            p = Profile(email=email, full_name=(email or "no email").split("@")[0], entity_id=entity_id, is_active=is_active)
            session.add(p)
            roles_by_profile.append((p, roles))
            return p

        profiles = {
            "entity_user": person("board@folk.example", [Role.ENTITY], entity_id=entity.id),
            "entity_colleague": person("treasurer@folk.example", [Role.ENTITY], entity_id=entity.id),
            "other_entity_user": person("board@sports.example", [Role.ENTITY], entity_id=other.id),
            "silent_entity_user": person(None, [Role.ENTITY], entity_id=silent.id),
            "tech": person("tech@council.example", [Role.TECH]),
            "admin": person("admin@council.example", [Role.ADMIN]),
            "validator": person("validator@council.example", [Role.VALIDATOR]),
            "president": person("president@council.example", [Role.PRESIDENT]),
            "inactive_tech": person("former@council.example", [Role.TECH], is_active=False),
            "no_roles": person("visitor@council.example", []),
        }
        await session.flush()

        for p, roles in roles_by_profile:
            for role in roles:
                session.add(UserRole(user_id=p.id, role=role))
        await session.commit()

        return Actors(
            entity_id=entity.id,
            other_entity_id=other.id,
            silent_entity_id=silent.id,
            **{name: p.id for name, p in profiles.items()},
        )

    return db.run(_seed)


@pytest.fixture()
def notifier() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture()
def client(db: SqliteDatabase, notifier: RecordingGateway) -> TestClient:
    async def _get_test_db():
        async with db.sessionmaker() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
