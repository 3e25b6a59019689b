import unittest
from unittest import mock

from ad_resolver.cache import IdentityCache
from ad_resolver.directory import MembershipTimedOut
from ad_resolver.errors import (
    AmbiguousMatch,
    DirectoryUnavailable,
    NotFound,
    RecursionLimitExceeded,
)
from ad_resolver.memory import InMemoryDirectory
from ad_resolver.resolver import GroupMembershipResolver

BASE = "DC=dept,DC=example,DC=edu"
GROUPS_OU = f"OU=Groups,{BASE}"
STAFF_OU = f"OU=Staff,{BASE}"

ALL_STAFF = f"CN=AllStaff,{GROUPS_OU}"
CONTRACTORS = f"CN=Contractors,{GROUPS_OU}"
ALICE = f"CN=Alice,{STAFF_OU}"
BOB = f"CN=Bob,{STAFF_OU}"
CAROL = f"CN=Carol,{STAFF_OU}"


def build_directory(fast_path_timeouts=None):
    """AllStaff = {Alice, Bob (disabled), Contractors = {Carol}}"""
    directory = InMemoryDirectory(fast_path_timeouts=fast_path_timeouts)
    directory.add_group(ALL_STAFF)
    directory.add_group(CONTRACTORS, member_of=[ALL_STAFF])
    directory.add_user(ALICE, "alice", member_of=[ALL_STAFF], mail="alice@dept.example.edu")
    directory.add_user(BOB, "bob", enabled=False, member_of=[ALL_STAFF], mail="bob@dept.example.edu")
    directory.add_user(CAROL, "carol", member_of=[CONTRACTORS], mail="carol@dept.example.edu")
    return directory


def names(identities):
    return [identity.first("sAMAccountName") for identity in identities]


class FastPathTests(unittest.TestCase):
    def setUp(self):
        self.directory = build_directory()
        self.resolver = GroupMembershipResolver(self.directory)

    def test_all_staff_scenario(self):
        """Disabled Bob is dropped, nested Carol is included, discovery order kept."""
        result = self.resolver.resolve(["AllStaff"])

        self.assertEqual(names(result), ["alice", "carol"])
        self.assertEqual(self.resolver.slow_path_groups, [])

    def test_include_disabled_keeps_bob(self):
        result = self.resolver.resolve(["AllStaff"], include_disabled=True)

        self.assertEqual(names(result), ["alice", "bob", "carol"])

    def test_flat_group_returns_direct_members(self):
        """A group without nested groups yields exactly its direct user members."""
        result = self.resolver.resolve(["Contractors"])

        self.assertEqual([i.distinguished_name for i in result], [CAROL])

    def test_non_recursive_skips_nested_groups(self):
        result = self.resolver.resolve(["AllStaff"], recursive=False)

        self.assertEqual(names(result), ["alice"])

    def test_fast_path_members_need_no_backfill(self):
        """Fast-path records carry memberOf, so no per-member DN lookup is issued."""
        with mock.patch.object(self.directory, "get_by_dn", wraps=self.directory.get_by_dn) as get_by_dn:
            result = self.resolver.resolve(["AllStaff"])

        get_by_dn.assert_not_called()
        self.assertTrue(all(identity.attributes_complete for identity in result))

    def test_group_by_distinguished_name(self):
        result = self.resolver.resolve([ALL_STAFF])

        self.assertEqual(names(result), ["alice", "carol"])

    def test_same_user_through_two_groups_is_deduplicated(self):
        result = self.resolver.resolve(["AllStaff", "Contractors"])

        self.assertEqual(names(result), ["alice", "carol"])

    def test_requested_attributes_are_returned(self):
        self.directory.add_user(f"CN=Dan,{STAFF_OU}", "dan", member_of=[CONTRACTORS],
                                serialNumber=["SN-1", "SN-2"])

        result = self.resolver.resolve(["Contractors"], attributes=["serialNumber"])

        dan = [i for i in result if i.first("sAMAccountName") == "dan"][0]
        self.assertEqual(dan.first("serialNumber"), "SN-1")

    def test_later_resolve_returns_newly_requested_attributes(self):
        self.directory.add_user(f"CN=Dan,{STAFF_OU}", "dan", member_of=[CONTRACTORS],
                                serialNumber=["SN-1", "SN-2"])
        self.resolver.resolve(["Contractors"])

        result = self.resolver.resolve(["Contractors"], attributes=["serialNumber"])

        dan = [i for i in result if i.first("sAMAccountName") == "dan"][0]
        self.assertEqual(dan.first("serialNumber"), "SN-1")

    def test_unknown_group_raises_not_found(self):
        with self.assertRaises(NotFound):
            self.resolver.resolve(["NoSuchGroup"])

    def test_empty_group_identifier_rejected(self):
        with self.assertRaises(ValueError):
            self.resolver.resolve([""])

    def test_resolve_is_idempotent(self):
        first = self.resolver.resolve(["AllStaff"])
        second = self.resolver.resolve(["AllStaff"])

        self.assertEqual({i.distinguished_name for i in first}, {i.distinguished_name for i in second})


class SlowPathTests(unittest.TestCase):
    def setUp(self):
        self.directory = build_directory(fast_path_timeouts=["*"])
        self.resolver = GroupMembershipResolver(self.directory)

    def test_timeout_falls_back_to_manual_recursion(self):
        """A timing-out recursive primitive never surfaces; members come from the slow path."""
        result = self.resolver.resolve(["AllStaff"])

        self.assertEqual(names(result), ["alice", "carol"])
        self.assertIn("AllStaff", self.resolver.slow_path_groups)
        self.assertIn(CONTRACTORS, self.resolver.slow_path_groups)

    def test_only_top_group_times_out(self):
        directory = build_directory(fast_path_timeouts=["AllStaff"])
        resolver = GroupMembershipResolver(directory)

        result = resolver.resolve(["AllStaff"])

        self.assertEqual(names(result), ["alice", "carol"])
        self.assertEqual(resolver.slow_path_groups, ["AllStaff"])

    def test_slow_path_members_are_backfilled(self):
        result = self.resolver.resolve(["AllStaff"])

        alice = result[0]
        self.assertTrue(alice.attributes_complete)
        self.assertEqual(alice.first("mail"), "alice@dept.example.edu")
        self.assertEqual(alice.member_of, [ALL_STAFF])

    def test_user_in_two_nested_groups_backfilled_once(self):
        parent = f"CN=Parent,{GROUPS_OU}"
        first = f"CN=First,{GROUPS_OU}"
        second = f"CN=Second,{GROUPS_OU}"
        dave = f"CN=Dave,{STAFF_OU}"
        self.directory.add_group(parent)
        self.directory.add_group(first, member_of=[parent])
        self.directory.add_group(second, member_of=[parent])
        self.directory.add_user(dave, "dave", member_of=[first, second])

        with mock.patch.object(self.directory, "get_by_dn", wraps=self.directory.get_by_dn) as get_by_dn:
            result = self.resolver.resolve(["Parent"])

        self.assertEqual(names(result), ["dave"])
        dave_lookups = [c for c in get_by_dn.call_args_list if c.args[0] == dave]
        self.assertEqual(len(dave_lookups), 1)

    def test_second_resolve_uses_cache(self):
        self.resolver.resolve(["AllStaff"])

        with mock.patch.object(self.directory, "get_by_dn", wraps=self.directory.get_by_dn) as get_by_dn:
            again = self.resolver.resolve(["AllStaff"])

        member_lookups = [c for c in get_by_dn.call_args_list if c.args[0] in (ALICE, BOB, CAROL)]
        self.assertEqual(member_lookups, [])
        self.assertEqual(names(again), ["alice", "carol"])

    def test_backfill_fetches_attributes_missing_from_cache(self):
        dan = f"CN=Dan,{STAFF_OU}"
        self.directory.add_user(dan, "dan", member_of=[CONTRACTORS], serialNumber=["SN-1", "SN-2"])
        cache = IdentityCache(self.directory)
        cache.get("dan")
        resolver = GroupMembershipResolver(self.directory, cache=cache)

        result = resolver.resolve(["Contractors"], attributes=["serialNumber"])

        by_name = {i.first("sAMAccountName"): i for i in result}
        self.assertEqual(by_name["dan"].first("serialNumber"), "SN-1")
        self.assertIsNone(cache.get(dan).get("serialNumber"))

    def test_non_recursive_slow_path(self):
        with mock.patch.object(self.directory, "find", wraps=self.directory.find) as find:
            result = self.resolver.resolve(["AllStaff"], recursive=False)

        self.assertEqual(names(result), ["alice"])
        # group lookup + direct user members; no nested group query
        self.assertEqual(find.call_count, 2)

    def test_cyclic_groups_hit_recursion_limit(self):
        """G contains H contains G: manual recursion stops at the depth ceiling."""
        g = f"CN=G,{GROUPS_OU}"
        h = f"CN=H,{GROUPS_OU}"
        self.directory.add_group(g)
        self.directory.add_group(h, member_of=[g])
        self.directory.add_member(h, g)
        self.directory.add_user(f"CN=Erin,{STAFF_OU}", "erin", member_of=[g])

        with self.assertRaises(RecursionLimitExceeded) as ctx:
            self.resolver.resolve(["G"], recursive=True)

        self.assertEqual(ctx.exception.max_depth, 20)
        self.assertEqual(ctx.exception.depth, 21)

    def test_custom_depth_ceiling(self):
        level1 = f"CN=Level1,{GROUPS_OU}"
        level2 = f"CN=Level2,{GROUPS_OU}"
        level3 = f"CN=Level3,{GROUPS_OU}"
        self.directory.add_group(level1)
        self.directory.add_group(level2, member_of=[level1])
        self.directory.add_group(level3, member_of=[level2])
        self.directory.add_user(f"CN=Finn,{STAFF_OU}", "finn", member_of=[level3])
        resolver = GroupMembershipResolver(self.directory, max_depth=1)

        with self.assertRaises(RecursionLimitExceeded):
            resolver.resolve(["Level1"])

        self.assertEqual(names(GroupMembershipResolver(self.directory, max_depth=2).resolve(["Level1"])), ["finn"])

    def test_ambiguous_group_name(self):
        self.directory.add_group(f"CN=Lab,OU=Physics,{BASE}")
        self.directory.add_group(f"CN=Lab,OU=Chemistry,{BASE}")

        with self.assertRaises(AmbiguousMatch) as ctx:
            self.resolver.resolve(["Lab"])

        self.assertEqual(len(ctx.exception.matches), 2)


class CyclicFastPathTests(unittest.TestCase):
    def test_server_side_recursion_tolerates_cycles(self):
        directory = InMemoryDirectory()
        g = f"CN=G,{GROUPS_OU}"
        h = f"CN=H,{GROUPS_OU}"
        directory.add_group(g)
        directory.add_group(h, member_of=[g])
        directory.add_member(h, g)
        directory.add_user(f"CN=Erin,{STAFF_OU}", "erin", member_of=[h])

        result = GroupMembershipResolver(directory).resolve(["G"])

        self.assertEqual(names(result), ["erin"])


class FailurePropagationTests(unittest.TestCase):
    def test_directory_unavailable_is_not_retried(self):
        directory = build_directory()
        resolver = GroupMembershipResolver(directory)

        with mock.patch.object(directory, "get_group_members",
                               side_effect=DirectoryUnavailable("Bind failed")) as members, \
                mock.patch.object(directory, "find", wraps=directory.find) as find:
            with self.assertRaises(DirectoryUnavailable):
                resolver.resolve(["AllStaff"])

        self.assertEqual(members.call_count, 1)
        find.assert_not_called()

    def test_failure_during_slow_path_propagates(self):
        directory = build_directory(fast_path_timeouts=["*"])
        resolver = GroupMembershipResolver(directory)

        with mock.patch.object(directory, "find", side_effect=DirectoryUnavailable("Connection reset")):
            with self.assertRaises(DirectoryUnavailable):
                resolver.resolve(["AllStaff"])

    def test_timeout_result_from_custom_backend(self):
        directory = build_directory()
        resolver = GroupMembershipResolver(directory)
        original = directory.get_group_members

        def timing_out(group, recursive=True, attributes=()):
            if group == "AllStaff":
                return MembershipTimedOut(group=group, reason="timeLimitExceeded")
            return original(group, recursive=recursive, attributes=attributes)

        with mock.patch.object(directory, "get_group_members", side_effect=timing_out):
            result = resolver.resolve(["AllStaff"])

        self.assertEqual(names(result), ["alice", "carol"])

    def test_shared_cache_is_used(self):
        directory = build_directory(fast_path_timeouts=["*"])
        cache = IdentityCache(directory)
        resolver = GroupMembershipResolver(directory, cache=cache)

        resolver.resolve(["AllStaff"])

        self.assertIn(ALICE, cache)
        self.assertIn(CAROL, cache)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
