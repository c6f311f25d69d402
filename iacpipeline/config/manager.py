"""Configuration manager with validation and loading capabilities."""

import os
import yaml
import json
import logging
from typing import Dict, Any, List
from pathlib import Path
import re

from pydantic import ValidationError as PydanticValidationError

from ..core.interfaces import StageDefinition
from .presets import build_stage_definitions, enable_flags
from .schema import IaCTool, PipelineConfig, ValidationResult, ValidationError


class ConfigManager:
    """Manages pipeline configuration loading, validation, and variable substitution."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._config_cache: Dict[str, PipelineConfig] = {}

    def load_config(self, config_path: str, validate: bool = True) -> PipelineConfig:
        """
        Load and validate configuration from file.

        Args:
            config_path: Path to configuration file (YAML or JSON)
            validate: Whether to collect validation errors into a ValidationError

        Returns:
            PipelineConfig: Validated configuration object

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If config file doesn't exist
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        cache_key = str(config_path.absolute())
        if cache_key in self._config_cache:
            self.logger.debug(f"Using cached configuration for {config_path}")
            return self._config_cache[cache_key]

        try:
            raw_config = self._load_raw_config(config_path)
            if not isinstance(raw_config, dict):
                raise ValidationError(f"Configuration root must be a mapping: {config_path}")

            resolved_config = self.resolve_variables(raw_config)

            if validate:
                validation_result = self.validate_schema(resolved_config)
                if not validation_result.valid:
                    raise ValidationError(
                        f"Configuration validation failed: {'; '.join(validation_result.errors)}",
                        validation_result.errors
                    )
                for warning in validation_result.warnings:
                    self.logger.warning(warning)
                config = validation_result.config
            else:
                config = PipelineConfig(**resolved_config)

            self._config_cache[cache_key] = config

            self.logger.info(f"Successfully loaded configuration from {config_path}")
            return config

        except Exception as e:
            self.logger.error(f"Failed to load configuration from {config_path}: {str(e)}")
            raise

    def _load_raw_config(self, config_path: Path) -> Dict[str, Any]:
        """Load raw configuration from file."""
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if config_path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f)
                elif config_path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid YAML syntax: {str(e)}")
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON syntax: {str(e)}")

    def validate_schema(self, config: Dict[str, Any]) -> ValidationResult:
        """
        Validate configuration against schema.

        Args:
            config: Raw configuration dictionary

        Returns:
            ValidationResult: Validation result with errors and warnings
        """
        errors = []
        warnings = []

        try:
            pipeline_config = PipelineConfig(**config)
            warnings.extend(self._perform_custom_validations(pipeline_config))

            return ValidationResult(
                valid=True,
                errors=errors,
                warnings=warnings,
                config=pipeline_config
            )

        except PydanticValidationError as e:
            for error in e.errors():
                field_path = " -> ".join(str(loc) for loc in error['loc'])
                error_msg = f"{field_path}: {error['msg']}" if field_path else error['msg']
                errors.append(error_msg)

            return ValidationResult(valid=False, errors=errors, warnings=warnings, config=None)
        except TypeError as e:
            errors.append(f"Unexpected validation error: {str(e)}")
            return ValidationResult(valid=False, errors=errors, warnings=warnings, config=None)

    def _perform_custom_validations(self, config: PipelineConfig) -> List[str]:
        """Perform additional custom validations and return warnings."""
        warnings = []
        options = config.options

        if options.upload_sarif and not options.enable_security_scan:
            warnings.append("upload_sarif is set but security scanning is disabled; no SARIF will be produced.")

        if options.pr_comment and not (config.reporting.github_repository and config.reporting.pull_request):
            warnings.append("pr_comment is set but reporting.github_repository/pull_request are missing; "
                            "comments will only be printed.")

        if options.enable_cost_estimate and config.stack.tool == IaCTool.BICEP.value and config.stages is None:
            warnings.append("Cost estimation is not available for Bicep stacks and will be skipped.")

        if options.enable_apply and config.stack.tool == IaCTool.BICEP.value and config.stages is None:
            warnings.append("enable_apply has no effect for Bicep stacks; only what-if runs.")

        if options.enable_security_scan and not options.scanners and config.stages is None:
            warnings.append("Security scanning is enabled but no scanners are configured.")

        return warnings

    def resolve_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Resolve environment variables and other substitutions in configuration.

        Args:
            config: Raw configuration dictionary

        Returns:
            Dict[str, Any]: Configuration with resolved variables
        """
        def resolve_value(value):
            if isinstance(value, str):
                return self._substitute_variables(value)
            elif isinstance(value, dict):
                return {k: resolve_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [resolve_value(item) for item in value]
            else:
                return value

        return resolve_value(config)

    def _substitute_variables(self, value: str) -> str:
        """
        Substitute environment variables in string values.

        Supports:
        - ${VAR_NAME} or ${VAR_NAME:default_value}
        - $VAR_NAME
        """
        pattern1 = re.compile(r'\$\{([^}:]+)(?::([^}]*))?\}')

        def replace_match(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(var_name, default_value)

        result = pattern1.sub(replace_match, value)

        pattern2 = re.compile(r'\$([A-Za-z_][A-Za-z0-9_]*)')

        def replace_simple(match):
            var_name = match.group(1)
            return os.environ.get(var_name, f"${var_name}")  # Keep original if not found

        return pattern2.sub(replace_simple, result)

    def build_stage_definitions(self, config: PipelineConfig) -> List[StageDefinition]:
        """Stage definitions for a loaded configuration."""
        return build_stage_definitions(config)

    def enable_flags(self, config: PipelineConfig) -> Dict[str, bool]:
        """Enable flags for a loaded configuration."""
        return enable_flags(config)

    def clear_cache(self) -> None:
        """Clear the configuration cache."""
        self._config_cache.clear()
        self.logger.debug("Configuration cache cleared")

    def get_default_config(self, tool: str = "terraform") -> Dict[str, Any]:
        """Get a default configuration template."""
        if tool == IaCTool.BICEP.value:
            stack = {
                "tool": "bicep",
                "stack_dir": "infra",
                "template_file": "main.bicep",
                "var_file": "main.${ENVIRONMENT:dev}.bicepparam",
                "resource_group": "rg-example-${ENVIRONMENT:dev}",
                "secrets": ["AZURE_CLIENT_ID", "AZURE_TENANT_ID", "AZURE_SUBSCRIPTION_ID"],
            }
            options = {
                "enable_security_scan": True,
                "deployment_scope": "resourceGroup",
                "scanners": ["checkov"],
                "upload_sarif": True,
            }
        else:
            stack = {
                "tool": "terraform",
                "stack_dir": "infra",
                "var_file": "${ENVIRONMENT:dev}.tfvars",
                "secrets": ["ARM_CLIENT_ID", "ARM_TENANT_ID", "ARM_SUBSCRIPTION_ID"],
            }
            options = {
                "enable_security_scan": True,
                "enable_cost_estimate": False,
                "scanners": ["tfsec", "checkov"],
                "upload_sarif": True,
                "currency": "USD",
            }

        return {
            "pipeline": {
                "name": "example-infrastructure",
                "description": "Plan, scan and estimate infrastructure changes",
                "environment": "${ENVIRONMENT:dev}",
            },
            "options": options,
            "stack": stack,
            "reporting": {
                "output_dir": "./reports",
            },
        }
