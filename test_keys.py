from __future__ import annotations

import hashlib
import hmac
import unittest

from sigbackup.errors import ConfigError
from sigbackup.keys import (
    derive_backup_key,
    derive_keys,
    expand_backup_key,
    normalize_passphrase,
)

from backup_fixtures import TEST_BACKUP_KEY, TEST_PASSPHRASE, TEST_SALT


class PassphraseTests(unittest.TestCase):
    def test_whitespace_is_ignored(self):
        self.assertEqual(normalize_passphrase(TEST_PASSPHRASE), b"123456789012345678901234567890")
        self.assertEqual(
            normalize_passphrase("\t12345678901234567890\n1234567890 "),
            b"123456789012345678901234567890",
        )

    def test_rejects_bad_input(self):
        for bad in ["", "   ", "1234", "1" * 31, "12345a7890" * 3, "١٢٣٤٥" * 6]:
            with self.subTest(passphrase=bad):
                with self.assertRaises(ConfigError):
                    normalize_passphrase(bad)

    def test_derive_keys_validates_before_stretching(self):
        with self.assertRaises(ConfigError):
            derive_keys("not a passphrase", TEST_SALT)
        with self.assertRaises(ConfigError):
            derive_keys(None, TEST_SALT)


class KeyDerivationTests(unittest.TestCase):
    def test_stretching_matches_format(self):
        secret = normalize_passphrase(TEST_PASSPHRASE)
        # Salt once, then digest || passphrase for every round
        h = secret
        digest = hashlib.sha512(TEST_SALT)
        for _ in range(5):
            digest.update(h)
            digest.update(secret)
            h = digest.digest()
            digest = hashlib.sha512()
        self.assertEqual(derive_backup_key(secret, TEST_SALT, rounds=5), h[:32])

    def test_known_answer_vector(self):
        # Full 250000 rounds; vector produced with Perl Digest::SHA
        backup_key = derive_backup_key(normalize_passphrase(TEST_PASSPHRASE), TEST_SALT)
        self.assertEqual(
            backup_key.hex(),
            "4ef731397815f557b7c8ef368a12952f3b686182bb50ec4f8a201029a6d54a3c",
        )
        keys = derive_keys(TEST_PASSPHRASE, TEST_SALT)
        self.assertEqual(
            keys.cipher_key.hex(),
            "95a28359350dcaa92b9b18544256ee42c2797b437434cfa061ec1973cdadbd7f",
        )
        self.assertEqual(
            keys.mac_key.hex(),
            "7a50fb249a2e0740158631d6100238a6bcc32522a4a3e4037a041d3cd6d477a9",
        )

    def test_expansion_is_hkdf_sha256(self):
        keys = expand_backup_key(TEST_BACKUP_KEY)
        prk = hmac.new(b"\x00" * 32, TEST_BACKUP_KEY, hashlib.sha256).digest()
        t1 = hmac.new(prk, b"Backup Export\x01", hashlib.sha256).digest()
        t2 = hmac.new(prk, t1 + b"Backup Export\x02", hashlib.sha256).digest()
        self.assertEqual(keys.cipher_key, t1)
        self.assertEqual(keys.mac_key, t2)

    def test_deterministic_and_salt_sensitive(self):
        a = derive_keys(TEST_PASSPHRASE, TEST_SALT)
        b = derive_keys(TEST_PASSPHRASE.replace(" ", ""), TEST_SALT)
        self.assertEqual(a, b)
        self.assertEqual(len(a.cipher_key), 32)
        self.assertEqual(len(a.mac_key), 32)
        self.assertNotEqual(a.cipher_key, a.mac_key)
        other = derive_keys(TEST_PASSPHRASE, TEST_SALT[::-1])
        self.assertNotEqual(a, other)

    def test_backup_key_override(self):
        keys = derive_keys(None, TEST_SALT, backup_key=TEST_BACKUP_KEY)
        self.assertEqual(keys, expand_backup_key(TEST_BACKUP_KEY))
        with self.assertRaises(ConfigError):
            derive_keys(None, TEST_SALT, backup_key=b"short")

    def test_repr_hides_keys(self):
        keys = expand_backup_key(TEST_BACKUP_KEY)
        self.assertNotIn(keys.cipher_key.hex(), repr(keys))


if __name__ == "__main__":
    unittest.main()
