import asyncio
from dotenv import load_dotenv
from sqlalchemy.exc import IntegrityError
from inbola_auth.auth import repository as repo
from inbola_auth.auth.utils import hash_password, make_password_context, normalize_identifier, validate_password
from inbola_auth.config.admin_config import Settings as AdminSettings
from inbola_auth.config.settings import Settings
from inbola_auth.db.connection import build_engine, build_session_maker, create_all_tables
from inbola_auth.schema.full_schema import AccountRole, AuthProvider, IdentityBinding, Users

load_dotenv()


async def create_admin(session_maker, admin: AdminSettings, settings: Settings) -> Users:
    """Creates (or promotes) the admin account behind ADMIN_IDENTIFIER with a password login."""
    if not admin.ADMIN_IDENTIFIER or not admin.ADMIN_PASSWORD:
        raise SystemExit("Set ADMIN_IDENTIFIER and ADMIN_PASSWORD environment variables before running")

    ok, detail = validate_password(admin.ADMIN_PASSWORD)
    if not ok:
        raise SystemExit(detail)

    identifier = normalize_identifier(admin.ADMIN_IDENTIFIER, settings.PHONE_COUNTRY_PREFIX)
    context = make_password_context(settings.PASS_HASH_SCHEME, settings.PASS_HASH_ROUNDS)
    pwd_hash = hash_password(admin.ADMIN_PASSWORD, context)

    async with session_maker() as session:
        found = await repo.binding_with_account(session, AuthProvider.PASSWORD, identifier)
        if found:
            binding, user = found
            binding.password_hash = pwd_hash
            user.role = AccountRole.ADMIN
            user.is_active = True
            await session.commit()
            print(f"Updated admin public_id={user.public_id}")
            return user

        user = Users(name=admin.ADMIN_NAME, role=AccountRole.ADMIN)
        try:
            session.add(user)
            await session.flush()
            session.add(IdentityBinding(account_id=user.id, provider=AuthProvider.PASSWORD,
                                        external_id=identifier, password_hash=pwd_hash))
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise SystemExit("Admin identifier is already taken, rerun to update it")
        print(f"Created admin public_id={user.public_id}")
        return user


async def main():
    settings, admin = Settings(), AdminSettings()
    engine = build_engine(settings.DATABASE_URL)
    try:
        if admin.ENV == "dev":
            await create_all_tables(engine)
        await create_admin(build_session_maker(engine), admin, settings)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
