"""Job kinds: how templates are created and applied to branch children."""

from .interfaces import JobKind
from .models import BuildStep, Child, JobConfig, SourceBinding


class FreeStyleJobKind(JobKind):
    """Plain job made of a list of build steps."""

    def new_template_config(self) -> JobConfig:
        return JobConfig(
            disabled=True,
            scm=None,
            builders=[BuildStep(kind="shell", command="")],
        )

    def configure_from_template(
        self, child: Child, template: JobConfig, binding: SourceBinding
    ) -> JobConfig:
        """
        Derive a child configuration from the template.

        Layers are applied in this order, later ones winning:
        1. copy of the template configuration
        2. source binding of the child's branch
        3. child-local fields captured before the copy (display name,
           enabled/disabled state) and the child's own workspace
           override; without an override the template workspace is used

        Setting the binding before the copy would be overwritten by the
        template's null source.
        """
        was_disabled = child.config.disabled
        display_name = child.config.display_name

        config = template.model_copy(deep=True)

        config.scm = binding.model_copy(deep=True)

        config.display_name = display_name
        config.custom_workspace = child.workspace_override or template.custom_workspace
        config.disabled = was_disabled

        return config
