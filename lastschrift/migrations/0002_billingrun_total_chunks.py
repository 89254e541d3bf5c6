from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("lastschrift", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="billingrun",
            name="total_chunks",
            field=models.PositiveIntegerField(default=0, verbose_name="Geplante Chunks"),
        ),
        migrations.AddField(
            model_name="historicalbillingrun",
            name="total_chunks",
            field=models.PositiveIntegerField(default=0, verbose_name="Geplante Chunks"),
        ),
    ]
