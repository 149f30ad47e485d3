# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""codeforce: GitLab contribution metrics over a persistent response cache."""

__version__ = "0.1.0"
