# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0
