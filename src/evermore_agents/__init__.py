#!/usr/bin/env python
# coding=utf-8

# Copyright 2024 The HuggingFace Inc. team. All rights reserved.
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
__version__ = "0.1.0"

from .agents import *  # noqa: I001
from .background import *
from .companion import *
from .config import *
from .context import *
from .empathy import *
from .memory import *
from .monitoring import *
from .phases import *
from .ports import *
from .routing import *
from .safety import *
from .state import *
from .tools import *
from .tracing import *
from .utils import *
