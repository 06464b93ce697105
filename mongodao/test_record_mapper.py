import unittest
from dataclasses import dataclass, field
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, Field

from dao_errors import MappingError
from document_model import MongoId, Stored, Transient
from record_mapper import assign_id, field_key, field_table, to_object, to_record

@dataclass
class Address:
    city: str
    zip_code: Annotated[str, Stored("zip")] = ""

@dataclass
class Person:
    name: str
    age: int
    id: Annotated[Optional[Any], MongoId] = None
    email: Annotated[Optional[str], Stored("mail")] = None
    tags: List[str] = field(default_factory=list)
    home: Optional[Address] = None
    previous: List[Address] = field(default_factory=list)
    cache: Annotated[Optional[dict], Transient] = None

@dataclass(frozen=True)
class FrozenNote:
    title: str
    id: Annotated[Optional[str], MongoId] = None

@dataclass
class Clashing:
    a: Annotated[str, Stored("x")]
    x: str

class Account(BaseModel):
    owner: str = Field(alias="ownerName")
    balance: int = 0

class Token(BaseModel):
    value: str
    id: Optional[Any] = Field(default=None, alias="_id")

class PlainObject:
    def __init__(self):
        self.value = 1

class TestRecordMapper(unittest.TestCase):
    def test_round_trip(self):
        people = [
            Person("ann", 31),
            Person("bob", 40, id="p-2", email="bob@example.com", tags=["a", "b"]),
            Person("cy", 22, home=Address("Oslo", "0150"),
                   previous=[Address("Bergen", "5003"), Address("Tromso")]),
        ]
        for p in people:
            self.assertEqual(to_object(Person, to_record(p)), p)

    def test_record_keys(self):
        p = Person("bob", 40, id="p-2", email="bob@example.com", home=Address("Oslo", "0150"))
        rec = to_record(p)
        self.assertEqual(rec["_id"], "p-2")
        self.assertEqual(rec["mail"], "bob@example.com")
        self.assertEqual(rec["home"], {"city": "Oslo", "zip": "0150"})
        self.assertNotIn("id", rec)
        self.assertNotIn("email", rec)

    def test_unset_id_is_left_to_server(self):
        self.assertNotIn("_id", to_record(Person("ann", 31)))

    def test_transient_not_stored(self):
        p = Person("ann", 31, cache={"hot": True})
        rec = to_record(p)
        self.assertNotIn("cache", rec)
        back = to_object(Person, dict(rec, cache={"ignored": 1}))
        self.assertIsNone(back.cache)

    def test_absent_record_is_none(self):
        self.assertIsNone(to_object(Person, None))

    def test_extra_keys_ignored(self):
        obj = to_object(Person, {"name": "ann", "age": 3, "__v": 7})
        self.assertEqual(obj, Person("ann", 3))

    def test_missing_required_key(self):
        with self.assertRaises(MappingError):
            to_object(Person, {"name": "ann"})

    def test_wrong_nested_shape(self):
        with self.assertRaises(MappingError):
            to_object(Person, {"name": "ann", "age": 1, "home": "Oslo"})
        with self.assertRaises(MappingError):
            to_object(Person, {"name": "ann", "age": 1, "previous": {"city": "Oslo"}})

    def test_not_a_record(self):
        with self.assertRaises(MappingError):
            to_object(Person, ["ann", 1])

    def test_unmapped_types(self):
        with self.assertRaises(MappingError):
            to_record(PlainObject())
        with self.assertRaises(MappingError):
            to_record(None)
        with self.assertRaises(MappingError):
            to_object(PlainObject, {"value": 1})

    def test_duplicate_keys_rejected(self):
        with self.assertRaises(MappingError):
            field_table(Clashing)

    def test_table_is_cached(self):
        self.assertIs(field_table(Person), field_table(Person))

    def test_frozen_round_trip_and_assign_id(self):
        note = FrozenNote("plan")
        assign_id(note, "n-1")
        self.assertEqual(note.id, "n-1")
        # an id that is already set is kept
        assign_id(note, "n-2")
        self.assertEqual(note.id, "n-1")
        self.assertEqual(to_object(FrozenNote, to_record(note)), note)

    def test_field_key(self):
        self.assertEqual(field_key(Person, "email"), "mail")
        self.assertEqual(field_key(Person, "id"), "_id")
        self.assertEqual(field_key(Person, "home.zip_code"), "home.zip")
        self.assertEqual(field_key(Person, "previous.city"), "previous.city")
        self.assertEqual(field_key(Person, "unknown.path"), "unknown.path")
        self.assertEqual(field_key(Account, "owner"), "ownerName")

    def test_pydantic_id_left_to_server(self):
        token = Token(value="t")
        self.assertEqual(to_record(token), {"value": "t"})
        assign_id(token, "tok-1")
        self.assertEqual(token.id, "tok-1")
        self.assertEqual(to_record(token), {"value": "t", "_id": "tok-1"})
        self.assertEqual(to_object(Token, to_record(token)), token)

    def test_pydantic_model(self):
        acc = Account(ownerName="ann", balance=5)
        rec = to_record(acc)
        self.assertEqual(rec, {"ownerName": "ann", "balance": 5})
        self.assertEqual(to_object(Account, rec), acc)
        with self.assertRaises(MappingError):
            to_object(Account, {"balance": "lots"})

if __name__ == "__main__":
    unittest.main()
