import unittest

from ad_resolver.identity import (
    DirectoryRecord,
    Identity,
    KeyFormat,
    MultiValue,
    SingleValue,
    classify_key,
    dn_key,
    enabled_from_uac,
    to_attribute_value,
)


class KeyFormatTests(unittest.TestCase):
    def test_formats(self):
        self.assertEqual(classify_key("jsmith"), KeyFormat.BARE)
        self.assertEqual(classify_key("jsmith@dept.example.edu"), KeyFormat.UPN)
        self.assertEqual(classify_key("DEPT\\jsmith"), KeyFormat.NT_STYLE)
        self.assertEqual(
            classify_key("CN=Smith\\, John,OU=Staff,DC=dept,DC=example,DC=edu"),
            KeyFormat.DISTINGUISHED_NAME,
        )

    def test_equals_sign_alone_is_not_a_dn(self):
        self.assertEqual(classify_key("weird=name"), KeyFormat.BARE)

    def test_empty_key(self):
        with self.assertRaises(ValueError):
            classify_key("")

    def test_dn_key_ignores_case_and_spacing(self):
        self.assertEqual(
            dn_key("CN=Alice, OU=Staff, DC=dept"),
            dn_key("cn=alice,ou=staff,dc=dept"),
        )


class AttributeValueTests(unittest.TestCase):
    def test_first_value_wins(self):
        """Multi-valued serial numbers flatten to the first value."""
        self.assertEqual(MultiValue(("5CG123", "5CG456")).first(), "5CG123")
        self.assertIsNone(MultiValue(()).first())
        self.assertEqual(SingleValue("x").as_list(), ["x"])

    def test_wrapping_raw_values(self):
        self.assertEqual(to_attribute_value(["a", "b"]), MultiValue(("a", "b")))
        self.assertEqual(to_attribute_value("a"), SingleValue("a"))
        self.assertEqual(to_attribute_value(SingleValue(3)), SingleValue(3))


class IdentityTests(unittest.TestCase):
    def setUp(self):
        record = DirectoryRecord(
            distinguished_name="CN=PC-042,OU=Lab,DC=dept,DC=example,DC=edu",
            enabled=True,
            attributes={
                "sAMAccountName": SingleValue("PC-042$"),
                "serialNumber": MultiValue(("SN-A", "SN-B")),
                "memberOf": MultiValue(("CN=Lab-PCs,OU=Groups,DC=dept,DC=example,DC=edu",)),
            },
            member_of=["CN=Lab-PCs,OU=Groups,DC=dept,DC=example,DC=edu"],
            object_classes=["top", "person", "organizationalPerson", "user", "computer"],
        )
        self.identity = Identity.from_record(record, key="PC-042$")

    def test_attribute_lookup_is_case_insensitive(self):
        self.assertEqual(self.identity.first("SERIALNUMBER"), "SN-A")
        self.assertEqual(self.identity.values("serialnumber"), ["SN-A", "SN-B"])

    def test_missing_attribute_default(self):
        self.assertEqual(self.identity.first("mail", "n/a"), "n/a")
        self.assertEqual(self.identity.values("mail"), [])

    def test_flatten_skips_member_of(self):
        flat = self.identity.flatten()

        self.assertEqual(flat["serialNumber"], "SN-A")
        self.assertEqual(flat["dn"], "CN=PC-042,OU=Lab,DC=dept,DC=example,DC=edu")
        self.assertNotIn("memberOf", flat)

    def test_completeness_and_kind(self):
        self.assertTrue(self.identity.attributes_complete)
        self.assertFalse(self.identity.is_group)

    def test_key_defaults_to_dn(self):
        record = DirectoryRecord(distinguished_name="CN=X,DC=dept")
        self.assertEqual(Identity.from_record(record).key, "CN=X,DC=dept")
        self.assertFalse(Identity.from_record(record).attributes_complete)


class EnabledFlagTests(unittest.TestCase):
    def test_user_account_control(self):
        self.assertTrue(enabled_from_uac(512))
        self.assertFalse(enabled_from_uac(514))
        self.assertFalse(enabled_from_uac("66050"))
        self.assertTrue(enabled_from_uac(None))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
