"""
tests.test_directory

Identity format rules, the in-memory directory and the LDAP binding (against a
fake ldap3 connection).
"""

from __future__ import annotations

from typing import Any

import pytest

from ad_identity_worker.actions import IdentityType
from ad_identity_worker.directory.base import (
    DirectoryError,
    IdentityFormatError,
    MultipleMatchesError,
    PrincipalValidationError,
    validate_identity_format,
)
from ad_identity_worker.directory.ldap import LdapDirectory, build_identity_filter
from ad_identity_worker.directory.memory import DirectoryUser, InMemoryDirectory

GUID = "00112233-4455-6677-8899-aabbccddeeff"


@pytest.mark.parametrize(
    ("kind", "value"),
    [
        (IdentityType.sid, "jdoe"),
        (IdentityType.sid, "S-1"),
        (IdentityType.sid, "S-1-5-21-abc"),
        (IdentityType.guid, "not-a-guid"),
        (IdentityType.sam_account_name, "a" * 21),
        (IdentityType.sam_account_name, "dom\\jdoe"),
        (IdentityType.sam_account_name, "jdoe."),
    ],
)
def test_identity_format_mismatch(kind, value) -> None:
    with pytest.raises(IdentityFormatError):
        validate_identity_format(kind, value)


def test_identity_format_normalization() -> None:
    assert validate_identity_format(IdentityType.sid, " s-1-5-21-1-2 ") == "S-1-5-21-1-2"
    assert validate_identity_format(IdentityType.guid, "{" + GUID.upper() + "}") == GUID
    assert validate_identity_format(IdentityType.sam_account_name, "jdoe") == "jdoe"


@pytest.mark.asyncio
async def test_memory_directory_lookup_contract() -> None:
    directory = InMemoryDirectory(
        [DirectoryUser(sam_account_name="jdoe", sid="S-1-5-21-1-2-3", object_guid=GUID)]
    )

    by_guid = await directory.find_by_identity(IdentityType.guid, GUID.upper())
    missing = await directory.find_by_identity(IdentityType.sid, "S-1-5-21-9-9-9")

    assert by_guid is not None and by_guid.display_name == "jdoe"
    assert missing is None
    with pytest.raises(IdentityFormatError):
        await directory.find_by_identity(IdentityType.guid, "nope")


@pytest.mark.asyncio
async def test_memory_principal_writes_back_only_on_save() -> None:
    directory = InMemoryDirectory(
        [DirectoryUser(sam_account_name="jdoe", sid="S-1-5-21-1-2-3", object_guid=GUID)]
    )

    handle = await directory.find_by_identity(IdentityType.sam_account_name, "JDOE")
    assert directory.open_handles == 1

    async with handle as principal:
        principal.enabled = False
        assert directory.get_user("jdoe").enabled is True
        await principal.save()

    assert directory.get_user("jdoe").enabled is False
    assert directory.open_handles == 0


def test_ldap_filters_per_identity_kind() -> None:
    assert build_identity_filter(IdentityType.sid, "S-1-5-21-1-2-3") == (
        "(&(objectCategory=person)(objectClass=user)(objectSid=S-1-5-21-1-2-3))"
    )
    assert build_identity_filter(IdentityType.sam_account_name, "j(doe)") == (
        "(&(objectCategory=person)(objectClass=user)(sAMAccountName=j\\28doe\\29))"
    )
    guid_filter = build_identity_filter(IdentityType.guid, GUID)
    assert "(objectGUID=\\33\\22\\11\\00\\55\\44\\77\\66\\88\\99" in guid_filter


def test_ldap_filter_rejects_unwired_kinds_and_bad_formats() -> None:
    with pytest.raises(DirectoryError):
        build_identity_filter(IdentityType.distinguished_name, "CN=jdoe,DC=example,DC=test")
    with pytest.raises(IdentityFormatError):
        build_identity_filter(IdentityType.sid, "S-X")


def _entry(dn: str, sam: str, uac: int) -> dict[str, Any]:
    return {
        "type": "searchResEntry",
        "dn": dn,
        "raw_attributes": {
            "sAMAccountName": [sam.encode()],
            "userPrincipalName": [f"{sam}@example.test".encode()],
            "userAccountControl": [str(uac).encode()],
        },
    }


class FakeConnection:
    def __init__(
        self,
        *,
        entries: list[dict[str, Any]],
        result_code: int = 0,
        modify_result: int = 0,
    ) -> None:
        self.entries = entries
        self.result_code = result_code
        self.modify_result = modify_result
        self.searches: list[str] = []
        self.modifications: list[tuple[str, dict[str, Any]]] = []

    def search(self, search_base, search_filter, **kwargs):
        self.searches.append(search_filter)
        result = {"result": self.result_code, "description": "test"}
        return self.result_code == 0, result, self.entries, None

    def modify(self, dn, changes):
        self.modifications.append((dn, changes))
        result = {"result": self.modify_result, "description": "test"}
        return self.modify_result == 0, result, None, None

    def unbind(self):
        return True


def _ldap(connection: FakeConnection) -> LdapDirectory:
    return LdapDirectory(connection=connection, search_base="DC=example,DC=test")


@pytest.mark.asyncio
async def test_ldap_disable_sets_accountdisable_bit_once() -> None:
    connection = FakeConnection(entries=[_entry("CN=jdoe,DC=example,DC=test", "jdoe", 512)])
    directory = _ldap(connection)

    principal = await directory.find_by_identity(IdentityType.sam_account_name, "jdoe")
    assert principal is not None and principal.enabled is True
    principal.enabled = False
    await principal.save()
    await principal.save()

    assert connection.modifications == [
        ("CN=jdoe,DC=example,DC=test", {"userAccountControl": [("MODIFY_REPLACE", ["514"])]})
    ]


@pytest.mark.asyncio
async def test_ldap_save_of_unchanged_flag_is_a_no_op() -> None:
    connection = FakeConnection(entries=[_entry("CN=jdoe,DC=example,DC=test", "jdoe", 514)])

    principal = await _ldap(connection).find_by_identity(IdentityType.sam_account_name, "jdoe")
    principal.enabled = False
    await principal.save()

    assert connection.modifications == []


@pytest.mark.asyncio
async def test_ldap_lookup_failure_shapes() -> None:
    many = FakeConnection(
        entries=[_entry("CN=a,DC=x", "a", 512), _entry("CN=b,DC=x", "b", 512)], result_code=4
    )
    none = FakeConnection(entries=[])
    broken = FakeConnection(entries=[], result_code=52)

    with pytest.raises(MultipleMatchesError):
        await _ldap(many).find_by_identity(IdentityType.sam_account_name, "a")
    assert await _ldap(none).find_by_identity(IdentityType.sid, "S-1-5-21-1-2") is None
    with pytest.raises(DirectoryError):
        await _ldap(broken).find_by_identity(IdentityType.sid, "S-1-5-21-1-2")


@pytest.mark.asyncio
@pytest.mark.parametrize(("code", "error"), [(19, PrincipalValidationError), (80, DirectoryError)])
async def test_ldap_modify_failures(code, error) -> None:
    connection = FakeConnection(
        entries=[_entry("CN=jdoe,DC=example,DC=test", "jdoe", 512)], modify_result=code
    )

    principal = await _ldap(connection).find_by_identity(IdentityType.sam_account_name, "jdoe")
    principal.enabled = False

    with pytest.raises(error):
        await principal.save()
