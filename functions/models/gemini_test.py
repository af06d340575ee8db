# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


import unittest

from models import gemini


class ExtractJsonObjectTest(unittest.TestCase):

    def test_fenced_answer(self):
        text = 'Here you go:\n```json\n{"cards": [{"card_name": "Nami"}]}\n```'
        self.assertEqual(gemini.extract_json_object(text), {"cards": [{"card_name": "Nami"}]})

    def test_unparseable(self):
        self.assertIsNone(gemini.extract_json_object("no json here"))
        self.assertIsNone(gemini.extract_json_object("{not json}"))
        self.assertIsNone(gemini.extract_json_object(None))


if __name__ == "__main__":
    unittest.main()
